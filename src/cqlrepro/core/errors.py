"""
Structured error types for the reproduction harness.

Every failure the harness can hit is mapped onto a typed error carrying a
category, a retry flag, structured context and the chained driver or
runtime exception that caused it. The orchestrator relies on these types to
decide what is fatal, what is best-effort, and which scan failure is the
known server defect rather than a harness bug.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         ReproError                               │
        │              (category, retryable, context, cause)               │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError          ContainerError         DatabaseError       │
        │  (CONFIG)             (CONTAINER)            (DATABASE)          │
        │                            │                      │              │
        │                       ProvisionError         SchemaError         │
        │                       DockerNotFoundError    ScanError           │
        │                       ContainerNotFound        KnownDefectError  │
        │                       DestroyError                               │
        │                                                                  │
        │  TransientError (retryable=True)                                 │
        │       │                                                          │
        │  ReadinessTimeoutError     DatabaseConnectionError               │
        └─────────────────────────────────────────────────────────────────┘

Fatal vs best-effort:
    - ProvisionError, ReadinessTimeoutError, DatabaseConnectionError,
      SchemaError and ScanError abort the run (teardown still happens).
    - KnownDefectError is the outcome the harness exists to produce; it is
      acknowledged by the operator and the run proceeds to teardown.
    - DestroyError and ContainerNotFoundError during teardown are logged and
      never replace the earliest fatal error.

Usage:
    from cqlrepro.core.errors import ProvisionError

    try:
        run_docker(["pull", image])
    except subprocess.CalledProcessError as e:
        raise ProvisionError("image pull failed", stage="pulling", cause=e)

Tags:
    error-handling, exception-hierarchy, error-context, cqlrepro
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    NETWORK = "NETWORK"  # Unreachable host, readiness timeout
    DATABASE = "DATABASE"  # Session, schema and query failures
    CONTAINER = "CONTAINER"  # Container runtime failures
    CONFIG = "CONFIG"  # Invalid environment configuration
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only the fields relevant to the failure are set; ``to_dict()`` drops the
    rest so log lines stay short.
    """

    run_id: str | None = None
    step: str | None = None
    container: str | None = None
    host: str | None = None
    port: int | None = None
    keyspace: str | None = None
    table: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "step", "container", "host", "port", "keyspace", "table"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ReproError(Exception):
    """
    Base exception for all harness errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers can
    override either per instance. The wrapped exception is kept both as
    ``cause`` and as ``__cause__`` so tracebacks show the driver failure.

    Examples:
        >>> error = ReproError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(step="scan").context.step
        'scan'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReproError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SchemaError("bad name").with_context(keyspace="x y")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(ReproError):
    """Environment configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(ReproError):
    """Temporary error that may succeed if the operation is repeated."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ReadinessTimeoutError(TransientError):
    """The readiness probe used up its attempt budget."""

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


class DatabaseConnectionError(TransientError):
    """Session handshake failed: host unreachable, auth rejected or TLS failure."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# CONTAINER RUNTIME
# =============================================================================


class ContainerError(ReproError):
    """Base for container runtime failures."""

    default_category = ErrorCategory.CONTAINER


class ProvisionError(ContainerError):
    """Pulling, creating or starting the backing container failed.

    ``stage`` names the lifecycle state being entered when the failure
    happened. ``container_id`` is set when creation succeeded before a later
    stage failed, so teardown still has something to remove.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        container_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.stage = stage
        self.container_id = container_id

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["stage"] = self.stage
        if self.container_id:
            result["container_id"] = self.container_id
        return result


class DockerNotFoundError(ProvisionError):
    """Raised when the docker CLI is not available."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, stage="runtime", **kwargs)


class ContainerNotFoundError(ContainerError):
    """No container with the requested name exists."""


class DestroyError(ContainerError):
    """Stopping or removing the container failed."""


# =============================================================================
# DATABASE
# =============================================================================


class DatabaseError(ReproError):
    """Base for statement-level database failures."""

    default_category = ErrorCategory.DATABASE


class SchemaError(DatabaseError):
    """Keyspace or table bootstrap failed."""


class ScanError(DatabaseError):
    """A paginated scan failed."""


class KnownDefectError(ScanError):
    """The scan failed with the server-side NullPointerException signature.

    This is the pagination defect the harness reproduces, not a harness bug.
    """


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
    "KnownDefectError",
    "ProvisionError",
    "ReadinessTimeoutError",
    "ReproError",
    "ScanError",
    "SchemaError",
    "TransientError",
]
