"""Keyspace and table bootstrap.

Both objects are declared as ``IdempotentOperation`` instances: each checks
live cluster metadata before creating anything and issues ``IF NOT EXISTS``
DDL when it does, so the bootstrap can be repeated across runs and retried
within one.

Schema::

    CREATE KEYSPACE IF NOT EXISTS <ks>
        WITH replication = {'class': 'SimpleStrategy', 'replication_factor': 1}

    CREATE TABLE IF NOT EXISTS <ks>.users (
        first_name text,
        last_name  text,
        age        int,
        PRIMARY KEY (first_name, last_name)
    )
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from cqlrepro.core.errors import DatabaseConnectionError, SchemaError
from cqlrepro.core.idempotency import IdempotencyOutcome, IdempotentOperation, ensure
from cqlrepro.core.logging import get_logger
from cqlrepro.cql.connection import SYSTEM_KEYSPACE, ConnectionSupervisor

logger = get_logger(__name__)

# Unquoted CQL identifiers, which the server folds to lowercase: letter first,
# then lowercase letters, digits, underscores.
_IDENTIFIER = re.compile(r"^[a-z][a-z0-9_]{0,47}$")

REPLICATION_CLASS = "SimpleStrategy"
REPLICATION_FACTOR = 1
USERS_TABLE = "users"


def validate_identifier(name: str, kind: str) -> str:
    """Return ``name`` if it is a valid unquoted CQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise SchemaError(f"Malformed {kind} name: {name!r}").with_context(**{kind: name})
    return name


def _keyspace_metadata(session: Any) -> dict[str, Any]:
    return session.cluster.metadata.keyspaces


@dataclass(frozen=True)
class KeyspaceDefinition(IdempotentOperation):
    """Single-node keyspace (SimpleStrategy, replication factor 1)."""

    name: str
    replication_factor: int = REPLICATION_FACTOR

    @property
    def key(self) -> str:
        return f"keyspace:{self.name}"

    def statement(self) -> str:
        return (
            f"CREATE KEYSPACE IF NOT EXISTS {self.name} WITH replication = "
            f"{{'class': '{REPLICATION_CLASS}', 'replication_factor': {self.replication_factor}}}"
        )

    def is_applied(self, session: Any) -> bool:
        return self.name in _keyspace_metadata(session)

    def apply(self, session: Any) -> None:
        session.execute(self.statement())


@dataclass(frozen=True)
class TableDefinition(IdempotentOperation):
    """The fixed users table keyed by ``(first_name, last_name)``."""

    keyspace: str
    name: str = USERS_TABLE

    @property
    def key(self) -> str:
        return f"table:{self.keyspace}.{self.name}"

    def statement(self) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self.keyspace}.{self.name} ("
            "first_name text, "
            "last_name text, "
            "age int, "
            "PRIMARY KEY (first_name, last_name))"
        )

    def is_applied(self, session: Any) -> bool:
        keyspace = _keyspace_metadata(session).get(self.keyspace)
        return keyspace is not None and self.name in keyspace.tables

    def apply(self, session: Any) -> None:
        session.execute(self.statement())


class SchemaBootstrapper:
    """Ensures the run's keyspace and table exist."""

    def __init__(self, supervisor: ConnectionSupervisor) -> None:
        self.supervisor = supervisor

    def ensure_keyspace(self, name: str) -> IdempotencyOutcome:
        """Create keyspace ``name`` through a short-lived administrative session."""
        definition = KeyspaceDefinition(validate_identifier(name, "keyspace"))
        try:
            admin = self.supervisor.open_session(self.supervisor.build_topology(SYSTEM_KEYSPACE))
        except DatabaseConnectionError as exc:
            raise SchemaError(
                f"Could not reach database to create keyspace {name}", cause=exc
            ).with_context(keyspace=name) from exc

        try:
            return self._ensure(definition, admin.session)
        finally:
            self.supervisor.close(admin)

    def ensure_table(self, session: Any, name: str, keyspace: str) -> IdempotencyOutcome:
        """Create table ``keyspace.name`` with the fixed users schema."""
        definition = TableDefinition(
            keyspace=validate_identifier(keyspace, "keyspace"),
            name=validate_identifier(name, "table"),
        )
        return self._ensure(definition, session)

    def _ensure(self, definition: IdempotentOperation, session: Any) -> IdempotencyOutcome:
        try:
            outcome = ensure(definition, session)
        except SchemaError:
            raise
        except Exception as exc:
            raise SchemaError(f"Schema operation {definition.key} failed: {exc}", cause=exc) from exc
        logger.info("schema.ensured", key=definition.key, outcome=outcome.value)
        return outcome


__all__ = [
    "KeyspaceDefinition",
    "SchemaBootstrapper",
    "TableDefinition",
    "USERS_TABLE",
    "validate_identifier",
]
