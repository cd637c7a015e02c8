"""Write-once store for signing secrets, validated at startup."""

import logging
from dataclasses import dataclass

from tutorial_cms.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

JWT_SECRET = "jwt"
CSRF_SECRET = "csrf"
LOGIN_ATTEMPT_SALT = "login_salt"

# Example values shipped in docs and compose files; never acceptable
PLACEHOLDER_SECRETS = frozenset(
    {
        "change_me_or_app_will_fail",
        "your-super-secret-jwt-key-min-32-chars-change-me-in-production",
        "please-set-this-via-docker-compose-env",
    }
)


class SecretValidationError(ConfigurationError):
    """A secret is missing, too weak, or a known placeholder."""

    pass


class SecretAlreadyInitializedError(ConfigurationError):
    """A secret was initialized twice."""

    pass


@dataclass(frozen=True)
class SecretRule:
    """Entropy requirements for one secret."""

    env_var: str
    min_length: int
    min_unique_chars: int = 10
    min_char_classes: int = 0


SECRET_RULES: dict[str, SecretRule] = {
    JWT_SECRET: SecretRule(env_var="JWT_SECRET", min_length=43, min_char_classes=3),
    CSRF_SECRET: SecretRule(env_var="CSRF_SECRET", min_length=32),
    LOGIN_ATTEMPT_SALT: SecretRule(env_var="LOGIN_ATTEMPT_SALT", min_length=32),
}


def _char_classes(value: str) -> int:
    return sum(
        [
            any(c.islower() for c in value),
            any(c.isupper() for c in value),
            any(c.isdigit() for c in value),
            any(not c.isalnum() for c in value),
        ]
    )


def validate_secret(name: str, raw_value: str | None) -> str:
    """Validate a raw secret and return its trimmed value.

    Raises:
        SecretValidationError: If the secret does not meet its rule.
    """
    rule = SECRET_RULES[name]
    value = (raw_value or "").strip()

    if not value:
        raise SecretValidationError(f"{rule.env_var} must be set")
    if value.lower() in PLACEHOLDER_SECRETS:
        raise SecretValidationError(f"{rule.env_var} is a placeholder value, generate a real secret")
    if len(value) < rule.min_length:
        raise SecretValidationError(
            f"{rule.env_var} must be at least {rule.min_length} characters (got {len(value)})"
        )
    if len(set(value)) < rule.min_unique_chars:
        raise SecretValidationError(
            f"{rule.env_var} must contain at least {rule.min_unique_chars} distinct characters"
        )
    if rule.min_char_classes and _char_classes(value) < rule.min_char_classes:
        raise SecretValidationError(
            f"{rule.env_var} must mix at least {rule.min_char_classes} of: "
            "lowercase, uppercase, digits, symbols"
        )
    return value


class SecretStore:
    """Holds each secret exactly once for the lifetime of the application."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def init(self, name: str, raw_value: str | None) -> None:
        if name not in SECRET_RULES:
            raise KeyError(f"Unknown secret: {name}")
        if name in self._values:
            raise SecretAlreadyInitializedError(f"Secret '{name}' is already initialized")
        self._values[name] = validate_secret(name, raw_value)
        logger.debug(f"Secret '{name}' initialized")

    def get(self, name: str) -> str:
        try:
            return self._values[name]
        except KeyError:
            raise RuntimeError(f"Secret '{name}' read before initialization") from None

    def is_initialized(self, name: str) -> bool:
        return name in self._values
