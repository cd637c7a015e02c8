# Tutorial CMS Models
from tutorial_cms.models.login_attempt import LoginAttempt
from tutorial_cms.models.token_blacklist import TokenBlacklist
from tutorial_cms.models.user import User

__all__ = [
    "LoginAttempt",
    "TokenBlacklist",
    "User",
]
