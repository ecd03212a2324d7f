"""Environment configuration for a reproduction run.

All settings come from ``CASSANDRA_13592_*`` environment variables (and an
optional ``.env`` file), are validated once at start-up and are read-only
afterwards. The loaded ``EnvironmentConfig`` is owned by the
``ReproductionDriver`` and handed to each component that needs it; nothing
in the package keeps configuration in module globals.

Key Concepts:
    EnvironmentConfig: pydantic-settings model. Unset ``port`` means an
        ephemeral host port is allocated per run.
    load_config(): Builds the model and converts validation failures into
        ``ConfigError``.

Environment variables::

    CASSANDRA_13592_KEYSPACE         recreation
    CASSANDRA_13592_HOST             127.0.0.1
    CASSANDRA_13592_PORT             (allocated)
    CASSANDRA_13592_NAME             recreation
    CASSANDRA_13592_TIMEOUT          30
    CASSANDRA_13592_USER             (none)
    CASSANDRA_13592_PASSWORD         (none)
    CASSANDRA_13592_CA / _CERT / _KEY  (none; TLS only when all three are set)
    CASSANDRA_13592_REQUEST_TIMEOUT  60
    CASSANDRA_13592_LOG_LEVEL        INFO

Tags:
    config, settings, pydantic, environment
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from cqlrepro.core.errors import ConfigError

ENV_PREFIX = "CASSANDRA_13592_"


class EnvironmentConfig(BaseSettings):
    """Process-wide settings for one reproduction run."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Target ───────────────────────────────────────────────────
    keyspace: str = Field(default="recreation", description="Keyspace to bootstrap")
    host: str = Field(default="127.0.0.1", description="Host the database is reached on")
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Host port bound to the container; allocated when unset",
    )
    name: str = Field(default="recreation", description="Container name")
    timeout: int = Field(default=30, ge=1, description="Readiness probe attempts (seconds)")

    # ── Session ──────────────────────────────────────────────────
    user: str | None = Field(default=None, description="Username for password auth")
    password: str | None = Field(default=None, description="Password for password auth")
    ca: str | None = Field(default=None, description="CA certificate path")
    cert: str | None = Field(default=None, description="Client certificate path")
    key: str | None = Field(default=None, description="Client private key path")
    request_timeout: float = Field(default=60.0, gt=0, description="Per-request timeout (seconds)")

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Structlog log level")

    def masked(self) -> dict[str, Any]:
        """Settings as a dict with the password hidden."""
        data = self.model_dump()
        if data.get("password"):
            data["password"] = "********"
        return data


def load_config(**overrides: Any) -> EnvironmentConfig:
    """Load ``EnvironmentConfig``; keyword overrides win over the environment."""
    try:
        return EnvironmentConfig(**overrides)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid {ENV_PREFIX}* configuration: {exc.error_count()} error(s)",
            cause=exc,
        ) from exc


__all__ = ["ENV_PREFIX", "EnvironmentConfig", "load_config"]
