"""Runtime settings: env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
TAKO_* environment variables.  These are process-wide knobs (logging,
transport timeouts, the restart command); the per-image fetch configuration
lives in config files, see :mod:`tako.core.config_loader`.
"""

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export TAKO_LOG_LEVEL=DEBUG
        export TAKO_HTTP_TIMEOUT_SECONDS=60
        export TAKO_SECRET_KEY=MFMCAQEwBQYDK2VwBCIEI...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TAKO_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Lowest-precedence source for `tako store`; see core.keys.resolve_secret
    secret_key: SecretStr | None = None

    # Transport
    http_timeout_seconds: float = 30.0
    http_retries: int = 3
    user_agent: str = "tako/0.1.0"
    max_manifest_bytes: int = 64 * 1024

    # Restart
    restart_command: list[str] = ["systemctl", "restart"]
    restart_timeout_seconds: float = 120.0


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
