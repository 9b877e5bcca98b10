# app/config.py
"""
Centralized configuration management with startup validation.

Defines REQUIRED vs OPTIONAL environment variables and provides
safe configuration loading with validation and logging.
"""
import logging
import os
import re
import secrets
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "account-auth"
SERVICE_VERSION = "0.1.0"

# Default values
DEFAULT_APP_NAME = "Raghav_Verse"
DEFAULT_MAX_REQUEST_SIZE_BYTES = 1_048_576  # 1MB
MIN_REQUEST_SIZE_BYTES = 1024  # 1KB minimum
DEFAULT_SMTP_PORT = 465
DEFAULT_CORS_ORIGINS = ("http://localhost:5173",)

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"
    app_name: str = DEFAULT_APP_NAME

    # Session signing (REQUIRED in production)
    jwt_secret: str = field(default="", repr=False)
    jwt_secret_generated: bool = False

    # Storage
    db_path: Optional[str] = None

    # Mail (OPTIONAL - mail is logged instead of sent without SMTP_HOST)
    smtp_host: Optional[str] = None
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = field(default=None, repr=False)
    smtp_sender: Optional[str] = None
    smtp_use_ssl: bool = True

    # HTTP
    cors_origins: tuple = DEFAULT_CORS_ORIGINS
    max_request_size_bytes: int = DEFAULT_MAX_REQUEST_SIZE_BYTES

    # Warnings collected during config load
    warnings: list = field(default_factory=list)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_sender)


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_int_env(
    name: str, default: int, min_value: Optional[int] = None
) -> tuple[int, Optional[str]]:
    """
    Parse an integer environment variable with validation.

    Returns (value, warning_message).
    On invalid input, returns default with a warning.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default, None

    try:
        value = int(raw)
    except ValueError:
        warning = f"{name}='{raw}' is not a valid integer; using default {default}"
        return default, warning

    if min_value is not None and value < min_value:
        warning = f"{name}={value} is below minimum {min_value}; using default {default}"
        return default, warning

    return value, None


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    raw = os.environ.get(name, "").lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off"):
        return False
    return default


def _parse_list_env(name: str, default: tuple) -> tuple:
    """Parse a comma-separated environment variable."""
    raw = os.environ.get(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _get_environment() -> str:
    env = os.environ.get("ENV") or os.environ.get("RAILWAY_ENVIRONMENT") or "development"
    return env.lower()


def load_config(fail_fast: bool = True, dotenv: bool = False) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and continue.
        dotenv: If True, read a local .env file first (existing
                environment variables win).

    Returns:
        AppConfig instance with validated configuration.

    Raises:
        ConfigurationError: If required configuration is missing/invalid
                           and fail_fast is True.
    """
    if dotenv:
        load_dotenv(override=False)

    warnings = []
    environment = _get_environment()

    # Signing secret: required in production, ephemeral otherwise
    jwt_secret = os.environ.get("JWT_SECRET", "")
    jwt_secret_generated = False
    if not jwt_secret:
        if environment == "production" and fail_fast:
            raise ConfigurationError("JWT_SECRET must be set in production")
        jwt_secret = secrets.token_urlsafe(32)
        jwt_secret_generated = True
        warnings.append(
            "JWT_SECRET is not set; using a random per-process secret "
            "(sessions will not survive a restart)"
        )

    # Security settings with validation
    max_request_size, size_warning = _parse_int_env(
        "MAX_REQUEST_SIZE_BYTES",
        DEFAULT_MAX_REQUEST_SIZE_BYTES,
        min_value=MIN_REQUEST_SIZE_BYTES,
    )
    if size_warning:
        warnings.append(size_warning)

    # Mail settings (OPTIONAL)
    smtp_port, port_warning = _parse_int_env("SMTP_PORT", DEFAULT_SMTP_PORT, min_value=1)
    if port_warning:
        warnings.append(port_warning)

    smtp_host = os.environ.get("SMTP_HOST") or None
    smtp_sender = os.environ.get("SMTP_EMAIL") or None
    if smtp_host and not smtp_sender:
        warnings.append("SMTP_HOST is set but SMTP_EMAIL is not; outgoing mail disabled")
    elif not smtp_host:
        warnings.append("SMTP_HOST is not set; account emails will be logged, not sent")

    # Log warnings
    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    return AppConfig(
        environment=environment,
        app_name=os.environ.get("APP_NAME", DEFAULT_APP_NAME),
        jwt_secret=jwt_secret,
        jwt_secret_generated=jwt_secret_generated,
        db_path=os.environ.get("AUTH_DB_PATH") or None,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_username=os.environ.get("SMTP_USERNAME") or smtp_sender,
        smtp_password=os.environ.get("SMTP_PASSWORD") or None,
        smtp_sender=smtp_sender,
        smtp_use_ssl=_parse_bool_env("SMTP_USE_SSL", True),
        cors_origins=_parse_list_env("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
        max_request_size_bytes=max_request_size,
        warnings=warnings,
    )


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"max_request_size_bytes={config.max_request_size_bytes} "
        f"jwt_secret_present={not config.jwt_secret_generated} "
        f"smtp_enabled={config.smtp_enabled} "
        f"smtp_password_present={bool(config.smtp_password)}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # We allow "secret_present=" but not "secret=" followed by a value
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
