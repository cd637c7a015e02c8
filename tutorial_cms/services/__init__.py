# Tutorial CMS Services
from tutorial_cms.services.auth import AuthService, LoginResult
from tutorial_cms.services.login_attempts import LoginAttemptTracker, attempt_key
from tutorial_cms.services.token_blacklist import TokenBlacklistService, purge_expired_tokens
from tutorial_cms.services.users import UserService

__all__ = [
    "AuthService",
    "LoginAttemptTracker",
    "LoginResult",
    "TokenBlacklistService",
    "UserService",
    "attempt_key",
    "purge_expired_tokens",
]
