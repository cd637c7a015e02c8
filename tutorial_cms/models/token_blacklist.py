"""Revoked session tokens, kept until their natural expiry."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from tutorial_cms.core.database import Base


class TokenBlacklist(Base):
    """A logged-out JWT, stored verbatim.

    ``expires_at`` mirrors the token's ``exp`` claim; rows past it are
    pruned since the token is already rejected as expired.
    """

    __tablename__ = "token_blacklist"

    token: Mapped[str] = mapped_column(String(2048), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
