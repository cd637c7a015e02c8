"""Failed-login counters keyed by a salted hash of client IP and username."""

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tutorial_cms.core.database import Base


class LoginAttempt(Base):
    """Standing of one (IP, username) pair.

    The key is an HMAC hex digest, so rows never reveal usernames.
    ``blocked_until`` is a unix timestamp in seconds.
    """

    __tablename__ = "login_attempts"

    attempt_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blocked_until: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    def remaining_seconds(self, now: float) -> int:
        """Seconds left in the lockout window, 0 when not blocked."""
        if self.blocked_until is None:
            return 0
        return max(0, self.blocked_until - int(now))

    def is_blocked(self, now: float) -> bool:
        return self.remaining_seconds(now) > 0
