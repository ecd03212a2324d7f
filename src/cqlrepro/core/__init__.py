"""Core primitives shared by the harness: errors, logging, idempotency."""

from cqlrepro.core.errors import (
    ConfigError,
    ContainerError,
    ContainerNotFoundError,
    DatabaseConnectionError,
    DatabaseError,
    DestroyError,
    DockerNotFoundError,
    ErrorCategory,
    ErrorContext,
    KnownDefectError,
    ProvisionError,
    ReadinessTimeoutError,
    ReproError,
    ScanError,
    SchemaError,
    TransientError,
)
from cqlrepro.core.idempotency import IdempotencyOutcome, IdempotentOperation, ensure
from cqlrepro.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ConfigError",
    "ContainerError",
    "ContainerNotFoundError",
    "DatabaseConnectionError",
    "DatabaseError",
    "DestroyError",
    "DockerNotFoundError",
    "ErrorCategory",
    "ErrorContext",
    "IdempotencyOutcome",
    "IdempotentOperation",
    "KnownDefectError",
    "LogContext",
    "ProvisionError",
    "ReadinessTimeoutError",
    "ReproError",
    "ScanError",
    "SchemaError",
    "TransientError",
    "configure_logging",
    "ensure",
    "get_logger",
]
