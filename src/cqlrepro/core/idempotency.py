"""
Idempotent-operation contract for schema bootstrap.

An ``IdempotentOperation`` is safe to retry and has no side effect when
repeated. The contract is explicit rather than implied by statement text:

    1. ``is_applied(session)`` inspects live cluster metadata.
    2. ``apply(session)`` only runs when the check says the object is absent.
    3. The statement issued by ``apply`` is itself guarded (``IF NOT EXISTS``),
       so a race between check and apply still leaves a single object.

Architecture:
    ::

        ensure(op, session)
            │
            ├── op.is_applied(session) ──► True  ──► ALREADY_PRESENT
            │
            └── op.apply(session) ──────────────────► APPLIED

Examples:
    >>> outcome = ensure(KeyspaceDefinition("recreation"), session)
    >>> outcome
    <IdempotencyOutcome.APPLIED: 'applied'>
    >>> ensure(KeyspaceDefinition("recreation"), session)
    <IdempotencyOutcome.ALREADY_PRESENT: 'already_present'>

Tags:
    idempotency, schema, retry-safety, cqlrepro
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from cqlrepro.core.logging import get_logger

logger = get_logger(__name__)


class IdempotencyOutcome(str, Enum):
    """What ``ensure()`` did."""

    APPLIED = "applied"
    ALREADY_PRESENT = "already_present"


class IdempotentOperation(ABC):
    """An operation that converges on the same state however often it runs."""

    @property
    @abstractmethod
    def key(self) -> str:
        """Stable identity of the object the operation produces."""

    @abstractmethod
    def is_applied(self, session: Any) -> bool:
        """Return True when the object already exists."""

    @abstractmethod
    def apply(self, session: Any) -> None:
        """Create the object. Must itself be safe to repeat."""


def ensure(operation: IdempotentOperation, session: Any) -> IdempotencyOutcome:
    """Apply ``operation`` unless it is already in effect."""
    if operation.is_applied(session):
        logger.debug("idempotent.skip", key=operation.key)
        return IdempotencyOutcome.ALREADY_PRESENT

    operation.apply(session)
    logger.info("idempotent.applied", key=operation.key)
    return IdempotencyOutcome.APPLIED


__all__ = ["IdempotencyOutcome", "IdempotentOperation", "ensure"]
