"""Password hashing and strength policy.

NIST 800-63B aligned: slow salted hashing (Argon2id), length-first policy.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)

SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

COMMON_PASSWORDS = frozenset({"password123", "qwerty123", "12345678", "admin123"})


def default_hasher() -> PasswordHasher:
    return PasswordHasher(
        time_cost=3,
        memory_cost=65536,
        parallelism=4,
        hash_len=32,
        salt_len=16,
    )


class PasswordService:
    def __init__(self, hasher: PasswordHasher | None = None):
        self._hasher = hasher or default_hasher()

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            self._hasher.verify(password_hash, password)
            return True
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self._hasher.check_needs_rehash(password_hash)

    async def verify_password_async(self, password: str, password_hash: str) -> bool:
        # Argon2 is deliberately CPU- and memory-heavy; keep it off the event loop.
        return await asyncio.to_thread(self.verify_password, password, password_hash)

    async def hash_password_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash_password, password)


@dataclass
class PasswordPolicy:
    min_length: int = 12
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True
    special_characters: str = SPECIAL_CHARACTERS
    common_passwords: frozenset[str] = field(default_factory=lambda: COMMON_PASSWORDS)

    def validate(self, password: str) -> list[str]:
        errors = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")

        if len(password) > self.max_length:
            errors.append(f"Password must be at most {self.max_length} characters")

        if self.require_uppercase and not any(c.isupper() for c in password):
            errors.append("Password must contain at least one uppercase letter")

        if self.require_lowercase and not any(c.islower() for c in password):
            errors.append("Password must contain at least one lowercase letter")

        if self.require_digit and not any(c.isdigit() for c in password):
            errors.append("Password must contain at least one digit")

        if self.require_special and not any(c in self.special_characters for c in password):
            errors.append("Password must contain at least one special character")

        if password.lower() in self.common_passwords:
            errors.append("Password is too common")

        return errors
