"""
Shared pytest fixtures and in-memory fakes for cqlrepro tests.

This module provides:
- ``FakeDatabase``: a tiny stand-in for a Cassandra node. It builds fake
  clusters/sessions that understand the DDL, INSERT and paged SELECT
  statements the harness issues, and lets a test inject failures.
- ``FakeContainerManager``: a container manager that never calls docker.
- Structlog reset between tests.

Usage:
    def test_scan(seeded_db):
        session = seeded_db.cluster_factory().connect("recreation")
        page = PagedScanner(session).scan("users", 5)
"""

import re
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

# Ensure cqlrepro package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cassandra.cluster import NoHostAvailable
from cassandra.protocol import ServerError
from cassandra.query import SimpleStatement

from cqlrepro.core.errors import ContainerNotFoundError, DestroyError, ProvisionError
from cqlrepro.deploy.container import ContainerDescriptor, ContainerState

_CREATE_KEYSPACE = re.compile(r"CREATE KEYSPACE IF NOT EXISTS (\w+)")
_CREATE_TABLE = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+)\.(\w+)")

DEFAULT_FETCH_SIZE = 5000


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fake driver objects
# =============================================================================


class FakeResultSet:
    """Pages over a snapshot of rows the way the driver's ResultSet does."""

    def __init__(self, db: "FakeDatabase", rows: list[Any], size: int, offset: int):
        self._db = db
        self._rows = rows
        self._size = size
        self._offset = offset
        self._next: int | None = None
        self.current_rows: list[Any] = []
        self.response_future = MagicMock()
        self.pages_fetched = 0
        self._load()

    def _load(self) -> None:
        end = self._offset + self._size
        self.current_rows = self._rows[self._offset:end]
        self._next = end if end < len(self._rows) else None

    @property
    def has_more_pages(self) -> bool:
        return self._next is not None

    @property
    def paging_state(self) -> bytes | None:
        if self._next is None:
            return None
        return f"offset:{self._next}".encode()

    def fetch_next_page(self) -> None:
        if self._db.fetch_error is not None:
            raise self._db.fetch_error
        self._offset = self._next  # type: ignore[assignment]
        self.pages_fetched += 1
        self._load()


class FakeSession:
    """Executes the statements the harness issues against a FakeDatabase."""

    def __init__(self, cluster: "FakeCluster", keyspace: str | None):
        self.cluster = cluster
        self.keyspace = keyspace
        self.is_shutdown = False

    @property
    def db(self) -> "FakeDatabase":
        return self.cluster.db

    def prepare(self, query: str) -> Any:
        self.db.prepared.append(query)
        return SimpleNamespace(query_string=query, consistency_level=None)

    def execute(self, statement: Any, parameters: Any = None, paging_state: bytes | None = None) -> Any:
        if isinstance(statement, str):
            return self._ddl(statement)
        if isinstance(statement, SimpleStatement):
            return self._select(statement, paging_state)
        if self.db.insert_error is not None:
            raise self.db.insert_error
        first_name, last_name, age = parameters
        self.db.rows[(first_name, last_name)] = SimpleNamespace(
            first_name=first_name, last_name=last_name, age=age
        )
        return None

    def _ddl(self, statement: str) -> None:
        if self.db.ddl_error is not None:
            raise self.db.ddl_error
        self.db.ddl.append(statement)
        match = _CREATE_KEYSPACE.match(statement)
        if match:
            self.db.keyspaces.setdefault(match.group(1), SimpleNamespace(tables={}))
            return None
        match = _CREATE_TABLE.match(statement)
        if match:
            self.db.keyspaces[match.group(1)].tables.setdefault(match.group(2), object())
        return None

    def _select(self, statement: SimpleStatement, paging_state: bytes | None) -> FakeResultSet:
        fetch_size = statement.fetch_size
        size = fetch_size if isinstance(fetch_size, int) and fetch_size > 0 else self.db.default_fetch_size
        self.db.selects.append(
            SimpleNamespace(
                query=statement.query_string,
                fetch_size=size,
                paging_state=paging_state,
                consistency_level=statement.consistency_level,
            )
        )
        if self.db.select_error is not None:
            raise self.db.select_error
        if paging_state and self.db.resume_error is not None:
            raise self.db.resume_error
        offset = int(paging_state.decode().split(":")[1]) if paging_state else 0
        result = FakeResultSet(self.db, list(self.db.rows.values()), size, offset)
        self.db.result_sets.append(result)
        return result

    def shutdown(self) -> None:
        self.is_shutdown = True


class FakeCluster:
    """Stands in for ``cassandra.cluster.Cluster``; records its kwargs."""

    def __init__(self, db: "FakeDatabase", kwargs: dict[str, Any]):
        self.db = db
        self.kwargs = kwargs
        self.metadata = SimpleNamespace(keyspaces=db.keyspaces)
        self.sessions: list[FakeSession] = []
        self.is_shutdown = False

    def connect(self, keyspace: str | None = None) -> FakeSession:
        self.db.connect_attempts += 1
        if self.db.unreachable_attempts > 0:
            self.db.unreachable_attempts -= 1
            raise NoHostAvailable("Unable to connect to any servers", {"127.0.0.1:9042": OSError("refused")})
        if keyspace in self.db.refused_keyspaces:
            raise NoHostAvailable("Unable to connect to any servers", {"127.0.0.1:9042": OSError("refused")})
        if keyspace is not None and keyspace not in self.db.keyspaces:
            raise RuntimeError(f"Keyspace '{keyspace}' does not exist")
        session = FakeSession(self, keyspace)
        self.sessions.append(session)
        return session

    def shutdown(self) -> None:
        self.is_shutdown = True


class FakeDatabase:
    """In-memory node shared by every cluster a test builds.

    Failure knobs:
        unreachable_attempts: number of connects that fail before one succeeds
        refused_keyspaces: keyspaces whose connect always fails
        ddl_error / insert_error / select_error: raised by the matching statement
        resume_error: raised by a SELECT that carries a paging state
        fetch_error: raised by ``fetch_next_page``
    """

    def __init__(self, default_fetch_size: int = DEFAULT_FETCH_SIZE):
        self.keyspaces: dict[str, Any] = {"system": SimpleNamespace(tables={})}
        self.rows: dict[tuple[str, str], Any] = {}
        self.default_fetch_size = default_fetch_size
        self.clusters: list[FakeCluster] = []
        self.ddl: list[str] = []
        self.prepared: list[str] = []
        self.selects: list[Any] = []
        self.result_sets: list[FakeResultSet] = []
        self.connect_attempts = 0
        self.unreachable_attempts = 0
        self.refused_keyspaces: set[str] = set()
        self.ddl_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.select_error: Exception | None = None
        self.resume_error: Exception | None = None
        self.fetch_error: Exception | None = None

    def cluster_factory(self, **kwargs: Any) -> FakeCluster:
        cluster = FakeCluster(self, kwargs)
        self.clusters.append(cluster)
        return cluster

    def add_rows(self, names: list[str], last_name: str = "smith", age: int = 30) -> None:
        self.keyspaces.setdefault("recreation", SimpleNamespace(tables={}))
        self.keyspaces["recreation"].tables.setdefault("users", object())
        for name in names:
            self.rows[(name, last_name)] = SimpleNamespace(first_name=name, last_name=last_name, age=age)

    @property
    def sessions(self) -> list[FakeSession]:
        return [s for c in self.clusters for s in c.sessions]


def npe_error() -> ServerError:
    """The server error the paging defect produces."""
    return ServerError(0x0000, "java.lang.NullPointerException", None)


# =============================================================================
# Fake container manager
# =============================================================================


class FakeContainerManager:
    """Container manager double tracking whether the container exists.

    ``fail_stage`` is ``"pulling"`` (nothing created) or ``"running"``
    (created, then start fails). ``lose_descriptor`` leaves ``current``
    unset, as if the process lost track of the container after creating it.
    """

    def __init__(
        self,
        *,
        fail_stage: str | None = None,
        lose_descriptor: bool = False,
        destroy_error: bool = False,
        logs: str = "ERROR [SharedPool-Worker-1] java.lang.NullPointerException: null",
    ):
        self.fail_stage = fail_stage
        self.lose_descriptor = lose_descriptor
        self.destroy_error = destroy_error
        self.logs = logs
        self.current: ContainerDescriptor | None = None
        self.exists = False
        self.calls: list[tuple[Any, ...]] = []

    def provision(self, name: str, host_port: int) -> ContainerDescriptor:
        self.calls.append(("provision", name, host_port))
        if self.fail_stage == "pulling":
            raise ProvisionError("Pulling cassandra:3.11.1 failed: timeout", stage="pulling")

        self.exists = True
        descriptor = ContainerDescriptor(
            name=name,
            container_id="c0ffee000001",
            image="cassandra:3.11.1",
            host_port=host_port,
            internal_port=9042,
        )
        if not self.lose_descriptor:
            self.current = descriptor
        if self.fail_stage == "running":
            raise ProvisionError(
                f"Starting container {name} failed: port is already allocated",
                stage="running",
                container_id=descriptor.container_id,
            )
        descriptor.transition(ContainerState.RUNNING)
        return descriptor

    def locate(self, name: str) -> ContainerDescriptor:
        self.calls.append(("locate", name))
        if not self.exists:
            raise ContainerNotFoundError(f"No container named {name!r}")
        return ContainerDescriptor(
            name=name,
            container_id="c0ffee000001",
            image="cassandra:3.11.1",
            host_port=None,
            internal_port=9042,
            state=ContainerState.RUNNING,
        )

    def destroy(self, container_id: str) -> None:
        self.calls.append(("destroy", container_id))
        if self.destroy_error:
            raise DestroyError(f"Removing container {container_id} failed: device busy")
        self.exists = False

    def collect_logs(self, name: str, tail: int = 50) -> str:
        self.calls.append(("collect_logs", name, tail))
        return self.logs


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any ``configure_logging`` call a test made."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def seeded_db() -> FakeDatabase:
    """A node holding the twelve seeded users in ``recreation.users``."""
    from cqlrepro.cql.seeding import DEFAULT_NAMES

    db = FakeDatabase()
    db.add_rows(list(DEFAULT_NAMES))
    return db


@pytest.fixture
def connection_config():
    from cqlrepro.cql.connection import ConnectionConfig

    return ConnectionConfig(hosts=("127.0.0.1",), port=41923, keyspace="recreation")


@pytest.fixture
def supervisor(fake_db, connection_config):
    from cqlrepro.cql.connection import ConnectionSupervisor

    sleeps: list[float] = []
    sup = ConnectionSupervisor(
        connection_config,
        cluster_factory=fake_db.cluster_factory,
        sleep=sleeps.append,
    )
    sup.sleeps = sleeps  # type: ignore[attr-defined]
    return sup


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No CASSANDRA_13592_* variables and no stray .env file."""
    import os

    for key in list(os.environ):
        if key.startswith("CASSANDRA_13592_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def seeded_session(seeded_db, connection_config):
    """An open session on the seeded node's ``recreation`` keyspace."""
    from cqlrepro.cql.connection import ConnectionSupervisor

    sup = ConnectionSupervisor(connection_config, cluster_factory=seeded_db.cluster_factory)
    handle = sup.connect()
    yield handle.session
    sup.close()
