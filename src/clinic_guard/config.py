"""Configuration file support for clinic-guard."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import asyncpg

from .audit.context import RequestMeta
from .audit.logger import AuditLogWriter
from .audit.models import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, AuditConfig
from .audit.query import AuditQueryService
from .auth.cookies import CookieSettings, csrf_token_cookie, session_cookie
from .auth.guards import RequestContext
from .auth.models import Session
from .auth.session_manager import SessionConfig
from .auth.throttle import ThrottleConfig
from .errors import error_response
from .security.headers import security_headers
from .security.rate_limit import (
    DEFAULT_STORAGE_URI,
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimiter,
)

logger = logging.getLogger(__name__)

ENV_VAR = "CLINIC_GUARD_ENV"
VALID_ENVIRONMENTS = {"production", "development", "test"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

CREDENTIAL_KEYS = {
    "password",
    "db_password",
    "database_password",
    "secret",
    "api_key",
    "token",
    "credentials",
    "auth",
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


class CredentialInConfigError(Exception):
    """Raised when credentials are detected in configuration files."""

    pass


@dataclass
class GuardConfig:
    environment: str = "production"
    log_level: str = "INFO"
    session: SessionConfig = field(default_factory=SessionConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    rate_limits: dict[str, RateLimitConfig] = field(
        default_factory=lambda: dict(RATE_LIMIT_CONFIGS)
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def request_context(
        self,
        conn: asyncpg.Connection,
        audit: AuditLogWriter,
        session: Session | None = None,
        request_meta: RequestMeta | None = None,
    ) -> RequestContext:
        return RequestContext(
            conn=conn,
            audit=audit,
            session=session,
            request_meta=request_meta or RequestMeta(),
            audit_config=self.audit,
        )

    def query_service(self) -> AuditQueryService:
        return AuditQueryService.from_config(self.audit)

    def rate_limiter(self, storage_uri: str = DEFAULT_STORAGE_URI) -> RateLimiter:
        return RateLimiter(self.rate_limits, storage_uri)

    def session_cookie(self) -> CookieSettings:
        return session_cookie(self.environment, max_age=self.session.max_age_hours * 60 * 60)

    def csrf_cookie(self) -> CookieSettings:
        return csrf_token_cookie(self.environment)

    def security_headers(self) -> dict[str, str]:
        return security_headers(self.environment)

    def error_response(self, exc: BaseException) -> tuple[int, dict]:
        return error_response(exc, self.environment)


def detect_credentials_in_config(
    config_dict: dict[str, Any],
    path: str = "",
    warn_only: bool = True,
) -> list[str]:
    """Detect potential credentials in configuration dictionary.

    Args:
        config_dict: Configuration dictionary to check.
        path: Current path in nested config (for error messages).
        warn_only: If True, emit warning. If False, raise error.

    Returns:
        List of detected credential key paths.

    Raises:
        CredentialInConfigError: If credentials found and warn_only=False.
    """
    detected = []

    for key, value in config_dict.items():
        current_path = f"{path}.{key}" if path else key
        key_lower = key.lower()

        if isinstance(value, dict):
            detected.extend(detect_credentials_in_config(value, current_path, warn_only=True))
        elif any(cred_key in key_lower for cred_key in CREDENTIAL_KEYS) and value:
            detected.append(current_path)

    if detected and not path:
        msg = (
            f"Potential credentials detected in config file: {', '.join(detected)}. "
            "For HIPAA compliance, secrets must be provided via environment "
            "variables or secrets manager, not configuration files."
        )
        if warn_only:
            logger.warning(msg)
        else:
            raise CredentialInConfigError(msg)

    return detected


def _require_positive_int(section: dict[str, Any], key: str, prefix: str) -> None:
    if key not in section:
        return
    value = section[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{prefix}{key} must be an integer, got {type(value).__name__}"
        )
    if value <= 0:
        raise ConfigValidationError(f"{prefix}{key} must be positive, got {value}")


def validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values.

    Raises:
        ConfigValidationError: If any configuration value is invalid.
    """
    if "environment" in config_dict:
        environment = config_dict["environment"]
        if environment not in VALID_ENVIRONMENTS:
            raise ConfigValidationError(
                f"environment must be one of {sorted(VALID_ENVIRONMENTS)}, got '{environment}'"
            )

    if "log_level" in config_dict:
        log_level = config_dict["log_level"]
        if not isinstance(log_level, str):
            raise ConfigValidationError(
                f"log_level must be a string, got {type(log_level).__name__}"
            )
        if log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigValidationError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got '{log_level}'"
            )

    session = config_dict.get("session", {})
    for key in ("idle_timeout_minutes", "max_age_hours", "update_age_minutes"):
        _require_positive_int(session, key, "session.")

    throttle = config_dict.get("throttle", {})
    for key in ("max_attempts", "lockout_minutes", "attempt_window_minutes"):
        _require_positive_int(throttle, key, "throttle.")
    if "sweep_interval_seconds" in throttle:
        interval = throttle["sweep_interval_seconds"]
        if not isinstance(interval, int | float) or interval <= 0:
            raise ConfigValidationError(
                f"throttle.sweep_interval_seconds must be a positive number, got {interval!r}"
            )

    audit = config_dict.get("audit", {})
    for key in ("default_page_size", "max_page_size"):
        _require_positive_int(audit, key, "audit.")
    if audit.get("default_page_size", DEFAULT_PAGE_SIZE) > audit.get(
        "max_page_size", MAX_PAGE_SIZE
    ):
        raise ConfigValidationError("audit.default_page_size must not exceed max_page_size")

    for name, limit in config_dict.get("rate_limit", {}).items():
        if not isinstance(limit, dict):
            raise ConfigValidationError(f"rate_limit.{name} must be a table")
        _require_positive_int(limit, "window_seconds", f"rate_limit.{name}.")
        _require_positive_int(limit, "max_requests", f"rate_limit.{name}.")


def _rate_limits(data: dict[str, Any]) -> dict[str, RateLimitConfig]:
    limits = dict(RATE_LIMIT_CONFIGS)
    for name, values in data.items():
        base = limits.get(name)
        limits[name] = RateLimitConfig(
            window_seconds=values.get("window_seconds", base.window_seconds if base else 60),
            max_requests=values.get("max_requests", base.max_requests if base else 100),
            key_prefix=values.get("key_prefix", name),
        )
    return limits


def config_from_dict(config_dict: dict[str, Any]) -> GuardConfig:
    """Build a ``GuardConfig`` from an already validated ``[clinic_guard]`` table."""
    environment = os.environ.get(ENV_VAR) or config_dict.get("environment", "production")
    if environment not in VALID_ENVIRONMENTS:
        raise ConfigValidationError(
            f"{ENV_VAR} must be one of {sorted(VALID_ENVIRONMENTS)}, got '{environment}'"
        )

    session = config_dict.get("session", {})
    throttle = config_dict.get("throttle", {})
    session_fields = {"idle_timeout_minutes", "max_age_hours", "update_age_minutes"}
    throttle_fields = {
        "max_attempts",
        "lockout_minutes",
        "attempt_window_minutes",
        "sweep_interval_seconds",
    }

    return GuardConfig(
        environment=environment,
        log_level=config_dict.get("log_level", "INFO").upper(),
        session=SessionConfig(**{k: v for k, v in session.items() if k in session_fields}),
        throttle=ThrottleConfig(**{k: v for k, v in throttle.items() if k in throttle_fields}),
        audit=AuditConfig.from_dict(config_dict.get("audit", {})),
        rate_limits=_rate_limits(config_dict.get("rate_limit", {})),
    )


def load_config(
    config_path: Path | None = None, overrides: dict[str, Any] | None = None
) -> GuardConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML configuration file, or None for defaults.
        overrides: Optional dict of values to override loaded config.

    Returns:
        GuardConfig instance with loaded values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigValidationError: If any configuration value is invalid.
    """
    toml_data: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)

        detect_credentials_in_config(toml_data, warn_only=True)

    config_dict = toml_data.get("clinic_guard", {})

    if overrides:
        config_dict.update(overrides)

    validate_config(config_dict)
    return config_from_dict(config_dict)
