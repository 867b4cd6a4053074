"""Secure secrets management for HIPAA compliance.

Provides abstraction for retrieving secrets without exposing values in
logs or error messages.

HIPAA 164.312(d) - Person or Entity Authentication
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

SESSION_SECRET_ENV_VAR = "CLINIC_GUARD_SESSION_SECRET"
DB_PASSWORD_ENV_VAR = "CLINIC_GUARD_DB_PASSWORD"
DATABASE_URL_ENV_VAR = "CLINIC_GUARD_DATABASE_URL"

MIN_SESSION_SECRET_LENGTH = 32


class MaskedSecret:
    """Wrapper that prevents accidental exposure of secret values."""

    def __init__(self, value: str):
        self._value = value

    def get_value(self) -> str:
        return self._value

    def __str__(self) -> str:
        return "***MASKED***"

    def __repr__(self) -> str:
        return "MaskedSecret(***)"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MaskedSecret):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)


class SecretProvider(ABC):
    """Abstract base class for secrets backends."""

    @abstractmethod
    def get_secret(self, key: str) -> str | None:
        """Retrieve a secret value by key, or None if not found."""
        pass

    def get_secret_masked(self, key: str) -> MaskedSecret | None:
        value = self.get_secret(key)
        if value is not None:
            return MaskedSecret(value)
        return None


class EnvSecretProvider(SecretProvider):
    """Retrieve secrets from environment variables."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def get_secret(self, key: str) -> str | None:
        full_key = f"{self.prefix}{key}" if self.prefix else key
        value = os.environ.get(full_key)
        if value is not None:
            logger.debug("Secret loaded from environment variable: %s", full_key)
        return value


class SecretProviderError(Exception):
    """Raised when a required secret cannot be retrieved."""

    pass


class CredentialValidationError(Exception):
    """Raised when credentials are found in insecure locations."""

    pass


_URL_PASSWORD_MESSAGE = (
    "Database password detected in connection URL. "
    "For HIPAA compliance, passwords must be provided via environment "
    f"variable ({DB_PASSWORD_ENV_VAR} or PGPASSWORD) or secrets manager."
)


def validate_no_password_in_url(url: str) -> None:
    """Validate that a database URL does not contain a password.

    Raises:
        CredentialValidationError: If password is detected in URL.
    """
    parsed = urlparse(url)

    if parsed.password:
        raise CredentialValidationError(_URL_PASSWORD_MESSAGE)

    user_info = parsed.netloc.split("@")[0] if "@" in parsed.netloc else ""
    if ":" in user_info:
        raise CredentialValidationError(_URL_PASSWORD_MESSAGE)


def mask_password_in_url(url: str) -> str:
    """Replace any password in a database URL with ***MASKED*** for logging."""
    pattern = r"(://[^:/@]+:)([^@]+)(@)"
    return re.sub(pattern, r"\1***MASKED***\3", url)


def get_default_provider() -> SecretProvider:
    return EnvSecretProvider()


def get_database_password(
    provider: SecretProvider | None = None,
    password_env_var: str = DB_PASSWORD_ENV_VAR,
) -> str | None:
    """Get database password from secrets provider with PGPASSWORD fallback."""
    if provider is None:
        provider = get_default_provider()

    password = provider.get_secret(password_env_var)
    if password:
        logger.info("Database password loaded from %s", password_env_var)
        return password

    password = provider.get_secret("PGPASSWORD")
    if password:
        logger.info("Database password loaded from PGPASSWORD")
        return password

    return None


def get_session_secret(
    provider: SecretProvider | None = None,
    secret_env_var: str = SESSION_SECRET_ENV_VAR,
) -> MaskedSecret:
    """Get the session signing secret.

    Raises:
        SecretProviderError: If the secret is missing or too short to sign with.
    """
    if provider is None:
        provider = get_default_provider()

    secret = provider.get_secret_masked(secret_env_var)
    if secret is None or not secret.get_value():
        raise SecretProviderError(f"Session signing secret not set. Set {secret_env_var}.")
    if len(secret.get_value()) < MIN_SESSION_SECRET_LENGTH:
        raise SecretProviderError(
            f"Session signing secret must be at least {MIN_SESSION_SECRET_LENGTH} characters"
        )
    return secret
