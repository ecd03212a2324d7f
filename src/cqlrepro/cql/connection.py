"""Session management for the column store.

``ConnectionSupervisor`` turns a ``ConnectionConfig`` into a cluster topology,
opens sessions against it, gates the run on a bounded readiness probe and
releases sessions on every exit path.

Why This Matters:
    A freshly started Cassandra container accepts TCP connections long before
    it can serve a CQL session. Every later step assumes the readiness probe
    has already proved that a full session handshake succeeds, so the probe
    is the only place in the harness that blocks and retries.

Key Concepts:
    ConnectionConfig: Frozen pydantic model (hosts, port, credentials,
        optional TLS paths, keyspace, request timeout).
    TopologyDescriptor: Frozen dataclass holding the parameters a
        ``cassandra.cluster.Cluster`` is built from. Construction is pure;
        TLS files are only read when a session is opened.
    ConnectionHandle: An open session plus the topology and cluster it came
        from. ``close()`` is idempotent.
    ConnectionSupervisor: ``build_topology()``, ``open_session()``,
        ``connect()``, ``wait_until_ready()``, ``close()``.

Architecture Decisions:
    - Consistency is fixed at QUORUM through the default execution profile.
    - TLS host-name verification is disabled. This is a local-test trust
      model only; the peer certificate is still verified against the CA.
    - ``cluster_factory`` and ``sleep`` are injectable so the readiness loop
      and handshake failures can be exercised without a server.

Tags:
    cassandra, session, tls, readiness, probe
"""

from __future__ import annotations

import ssl
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cassandra import ConsistencyLevel
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile
from pydantic import BaseModel, ConfigDict, Field

from cqlrepro.core.errors import DatabaseConnectionError, ReadinessTimeoutError
from cqlrepro.core.logging import get_logger

if TYPE_CHECKING:
    from cqlrepro.deploy.config import EnvironmentConfig

logger = get_logger(__name__)

SYSTEM_KEYSPACE = "system"
DEFAULT_CQL_PORT = 9042


# ---------------------------------------------------------------------------
# Configuration and topology
# ---------------------------------------------------------------------------


class ConnectionConfig(BaseModel):
    """Everything needed to reach the database. Immutable."""

    model_config = ConfigDict(frozen=True)

    hosts: tuple[str, ...] = ("127.0.0.1",)
    port: int = Field(default=DEFAULT_CQL_PORT, ge=1, le=65535)
    user: str | None = None
    password: str | None = None
    ca: str | None = None
    cert: str | None = None
    key: str | None = None
    keyspace: str = "recreation"
    request_timeout: float = Field(default=60.0, gt=0)

    @property
    def tls_enabled(self) -> bool:
        """TLS is used only when CA, certificate and key are all supplied."""
        return bool(self.ca and self.cert and self.key)

    @classmethod
    def from_environment(cls, env: EnvironmentConfig, port: int) -> ConnectionConfig:
        """Derive the connection settings for a run from the environment."""
        return cls(
            hosts=(env.host,),
            port=port,
            user=env.user,
            password=env.password,
            ca=env.ca,
            cert=env.cert,
            key=env.key,
            keyspace=env.keyspace,
            request_timeout=env.request_timeout,
        )


@dataclass(frozen=True)
class TlsOptions:
    """Transport-security material for a session."""

    ca_path: str
    cert_path: str
    key_path: str
    check_hostname: bool = False


@dataclass(frozen=True)
class TopologyDescriptor:
    """Parameters a cluster object is built from."""

    hosts: tuple[str, ...]
    port: int
    keyspace: str | None
    consistency: int = ConsistencyLevel.QUORUM
    request_timeout: float = 60.0
    connect_timeout: float = 10.0
    username: str | None = None
    password: str | None = None
    tls: TlsOptions | None = None

    def auth_provider(self) -> PlainTextAuthProvider | None:
        if self.username is None:
            return None
        return PlainTextAuthProvider(username=self.username, password=self.password or "")

    def cluster_kwargs(self, ssl_context: ssl.SSLContext | None = None) -> dict[str, Any]:
        """Keyword arguments for ``cassandra.cluster.Cluster``."""
        profile = ExecutionProfile(
            consistency_level=self.consistency,
            request_timeout=self.request_timeout,
        )
        kwargs: dict[str, Any] = {
            "contact_points": list(self.hosts),
            "port": self.port,
            "execution_profiles": {EXEC_PROFILE_DEFAULT: profile},
            "connect_timeout": self.connect_timeout,
        }
        auth = self.auth_provider()
        if auth is not None:
            kwargs["auth_provider"] = auth
        if ssl_context is not None:
            kwargs["ssl_context"] = ssl_context
        return kwargs


def build_ssl_context(tls: TlsOptions) -> ssl.SSLContext:
    """Load TLS material into a client context.

    Raises ``OSError`` or ``ssl.SSLError`` when a file is missing or invalid.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = tls.check_hostname
    context.verify_mode = ssl.CERT_REQUIRED
    context.load_verify_locations(cafile=tls.ca_path)
    context.load_cert_chain(certfile=tls.cert_path, keyfile=tls.key_path)
    return context


# ---------------------------------------------------------------------------
# Session handle
# ---------------------------------------------------------------------------


@dataclass
class ConnectionHandle:
    """An open session and the cluster/topology used to create it."""

    session: Any
    cluster: Any
    topology: TopologyDescriptor
    closed: bool = field(default=False)

    def close(self) -> None:
        """Shut down the session and its cluster. Safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True
        try:
            self.session.shutdown()
        finally:
            self.cluster.shutdown()


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class ConnectionSupervisor:
    """Builds and holds the single session of a run.

    Parameters
    ----------
    config
        Connection settings.
    cluster_factory
        Callable building a cluster from ``TopologyDescriptor.cluster_kwargs()``.
    sleep
        Sleep function used between readiness attempts.
    probe_interval
        Seconds between readiness attempts.
    probe_timeout
        Connect and request timeout of each throwaway probe session.

    Example::

        supervisor = ConnectionSupervisor(config)
        supervisor.wait_until_ready("127.0.0.1", 41923, timeout_seconds=30)
        handle = supervisor.connect()
        ...
        supervisor.close()
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        cluster_factory: Callable[..., Any] = Cluster,
        sleep: Callable[[float], None] = time.sleep,
        probe_interval: float = 1.0,
        probe_timeout: float = 6.0,
    ) -> None:
        self.config = config
        self.handle: ConnectionHandle | None = None
        self._cluster_factory = cluster_factory
        self._sleep = sleep
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout

    def build_topology(
        self,
        keyspace: str | None = None,
        *,
        hosts: tuple[str, ...] | None = None,
        port: int | None = None,
        request_timeout: float | None = None,
        connect_timeout: float | None = None,
    ) -> TopologyDescriptor:
        """Assemble connection parameters. Pure; never fails."""
        tls = None
        if self.config.tls_enabled:
            tls = TlsOptions(
                ca_path=self.config.ca,  # type: ignore[arg-type]
                cert_path=self.config.cert,  # type: ignore[arg-type]
                key_path=self.config.key,  # type: ignore[arg-type]
            )
        timeout = request_timeout if request_timeout is not None else self.config.request_timeout
        return TopologyDescriptor(
            hosts=hosts or self.config.hosts,
            port=port or self.config.port,
            keyspace=keyspace,
            consistency=ConsistencyLevel.QUORUM,
            request_timeout=timeout,
            connect_timeout=connect_timeout if connect_timeout is not None else min(timeout, 10.0),
            username=self.config.user,
            password=self.config.password,
            tls=tls,
        )

    def open_session(self, topology: TopologyDescriptor) -> ConnectionHandle:
        """Perform the handshake and return an open handle.

        Raises
        ------
        DatabaseConnectionError
            When the service is unreachable, authentication is rejected or
            TLS negotiation fails.
        """
        ssl_context = None
        if topology.tls is not None:
            try:
                ssl_context = build_ssl_context(topology.tls)
            except (OSError, ssl.SSLError) as exc:
                raise DatabaseConnectionError(
                    f"Could not load TLS material: {exc}", cause=exc
                ).with_context(host=",".join(topology.hosts), port=topology.port) from exc

        cluster = self._cluster_factory(**topology.cluster_kwargs(ssl_context))
        try:
            session = cluster.connect(topology.keyspace)
        except Exception as exc:
            cluster.shutdown()
            raise DatabaseConnectionError(
                f"Could not open session to {','.join(topology.hosts)}:{topology.port}",
                cause=exc,
            ).with_context(
                host=",".join(topology.hosts),
                port=topology.port,
                keyspace=topology.keyspace,
            ) from exc

        return ConnectionHandle(session=session, cluster=cluster, topology=topology)

    def connect(self) -> ConnectionHandle:
        """Open the run's session on the configured keyspace."""
        if self.handle is not None and not self.handle.closed:
            return self.handle
        self.handle = self.open_session(self.build_topology(self.config.keyspace))
        logger.info(
            "session.opened",
            hosts=list(self.config.hosts),
            port=self.config.port,
            keyspace=self.config.keyspace,
            tls=self.config.tls_enabled,
        )
        return self.handle

    def wait_until_ready(
        self,
        host: str | None = None,
        port: int | None = None,
        timeout_seconds: int = 30,
    ) -> int:
        """Poll with throwaway sessions until one succeeds.

        Makes at most ``timeout_seconds`` attempts, sleeping
        ``probe_interval`` between them. Returns the number of attempts used.

        Raises
        ------
        ReadinessTimeoutError
            When every attempt failed.
        """
        topology = self.build_topology(
            SYSTEM_KEYSPACE,
            hosts=(host,) if host else None,
            port=port,
            request_timeout=self.probe_timeout,
            connect_timeout=self.probe_timeout,
        )
        logger.info(
            "readiness.waiting",
            host=",".join(topology.hosts),
            port=topology.port,
            max_attempts=timeout_seconds,
        )

        last_error: DatabaseConnectionError | None = None
        for attempt in range(1, timeout_seconds + 1):
            try:
                probe = self.open_session(topology)
            except DatabaseConnectionError as exc:
                last_error = exc
                logger.debug("readiness.attempt_failed", attempt=attempt, error=str(exc.cause))
                if attempt < timeout_seconds:
                    self._sleep(self.probe_interval)
                continue
            probe.close()
            logger.info("readiness.ready", attempts=attempt)
            return attempt

        raise ReadinessTimeoutError(
            f"Database at {','.join(topology.hosts)}:{topology.port} not ready "
            f"after {timeout_seconds} attempts",
            attempts=timeout_seconds,
            cause=last_error,
        ).with_context(host=",".join(topology.hosts), port=topology.port)

    def close(self, handle: ConnectionHandle | None = None) -> None:
        """Release ``handle`` (or the supervisor's own). Safe on None or closed handles."""
        target = handle if handle is not None else self.handle
        if target is None:
            return
        target.close()
        if target is self.handle:
            self.handle = None
        logger.debug("session.closed")


__all__ = [
    "DEFAULT_CQL_PORT",
    "SYSTEM_KEYSPACE",
    "ConnectionConfig",
    "ConnectionHandle",
    "ConnectionSupervisor",
    "TlsOptions",
    "TopologyDescriptor",
    "build_ssl_context",
]
