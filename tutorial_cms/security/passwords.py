"""Password hashing and verification.

New hashes are Argon2id. bcrypt hashes (``$2a$``/``$2b$``/``$2y$``) from
earlier deployments still verify.
"""

import asyncio
import logging
import string
from functools import lru_cache

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

PASSWORD_MIN_LENGTH = 12
PASSWORD_MAX_LENGTH = 128
PASSWORD_MIN_CHAR_CLASSES = 3


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against an Argon2 or bcrypt hash.

    Malformed hashes are logged and treated as a mismatch.
    """
    if password_hash.startswith(BCRYPT_PREFIXES):
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError as e:
            logger.warning(f"bcrypt verification failed: {e}")
            return False

    try:
        return ph.verify(password_hash, password)
    except VerifyMismatchError:
        return False
    except (VerificationError, InvalidHashError) as e:
        logger.warning(f"Argon2 verification failed: {e}")
        return False


async def verify_password_async(password: str, password_hash: str) -> bool:
    """Run verify_password in a worker thread."""
    return await asyncio.to_thread(verify_password, password, password_hash)


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Fixed hash compared against when the user does not exist."""
    return hash_password("dummy-password-for-timing-equalization")


def password_char_classes(password: str) -> int:
    return sum(
        [
            any(c in string.ascii_lowercase for c in password),
            any(c in string.ascii_uppercase for c in password),
            any(c in string.digits for c in password),
            any(not c.isascii() or not c.isalnum() for c in password),
        ]
    )


def password_is_acceptable(password: str) -> bool:
    """Length between 12 and 128 and at least 3 of the 4 character classes."""
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        return False
    return password_char_classes(password) >= PASSWORD_MIN_CHAR_CLASSES
