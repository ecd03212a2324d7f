"""Reproduction orchestrator.

``ReproductionDriver`` runs the whole reproduction in one ``run()`` call:
port allocation → container provisioning → readiness gate → schema
bootstrap → seeding → scan sequence → teardown. It is the only component
that knows the full sequence; every other component receives what it needs
by argument.

Scan sequence::

    (a) scan(users, 0)            full table, driver page size
    (b) scan(users, 1)            one record, keep its continuation token
    (c) scan(users, 0)            full table again, reuses driver state
    (d) scan(users, 5, token(b))  resume after a one-row page

Step (d) is where the server raises ``java.lang.NullPointerException`` on
the affected versions. That error is reported as a reproduction, the
operator is asked to acknowledge it (so container logs can be inspected),
and the run proceeds to teardown.

Failure policy:
    - Any other error aborts the remaining steps; the earliest one is kept
      as ``RunResult.error``.
    - Teardown always runs: the session is closed and the container is
      destroyed, found by name if the in-memory descriptor was never set.
    - Teardown failures are recorded in ``RunResult.teardown_error`` and
      never replace the earliest fatal error.

Example::

    from cqlrepro.deploy.config import load_config
    from cqlrepro.deploy.workflow import ReproductionDriver

    result = ReproductionDriver(load_config()).run()
    print(result.summary)
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from cqlrepro.core.errors import (
    ContainerError,
    ContainerNotFoundError,
    KnownDefectError,
    ReproError,
)
from cqlrepro.core.logging import LogContext, get_logger
from cqlrepro.cql.connection import ConnectionConfig, ConnectionHandle, ConnectionSupervisor
from cqlrepro.cql.scanner import PagedScanner, ScanPage
from cqlrepro.cql.schema import USERS_TABLE, SchemaBootstrapper
from cqlrepro.cql.seeding import DEFAULT_NAMES, build_users, seed_users
from cqlrepro.deploy.acknowledge import Acknowledger, ConsoleAcknowledger
from cqlrepro.deploy.config import EnvironmentConfig
from cqlrepro.deploy.container import ContainerDescriptor, ContainerManager
from cqlrepro.deploy.ports import allocate_port
from cqlrepro.deploy.results import RunResult, RunStatus, ScanSummary, StepResult

logger = get_logger(__name__)

T = TypeVar("T")


class ReproductionDriver:
    """Orchestrates one reproduction run.

    Parameters
    ----------
    config
        Environment configuration, loaded once by the caller.
    container_manager_factory
        Builds the container manager for a run id.
    supervisor_factory
        Builds the connection supervisor from a ``ConnectionConfig``.
    acknowledger
        Receives the defect diagnostic. Defaults to a blocking console prompt.
    port_allocator
        Returns a free host port when ``config.port`` is unset.
    rng
        Random source for seeded ages.
    fetch_size
        Internal page size override for capped scans.
    log_tail
        Container log lines captured when the defect is reproduced.
    """

    def __init__(
        self,
        config: EnvironmentConfig,
        *,
        container_manager_factory: Callable[[str], ContainerManager] | None = None,
        supervisor_factory: Callable[[ConnectionConfig], ConnectionSupervisor] = ConnectionSupervisor,
        acknowledger: Acknowledger | None = None,
        port_allocator: Callable[[], int] = allocate_port,
        rng: random.Random | None = None,
        names: tuple[str, ...] = DEFAULT_NAMES,
        fetch_size: int | None = None,
        log_tail: int = 50,
    ) -> None:
        self.config = config
        self.run_id = uuid.uuid4().hex[:12]
        self.acknowledger = acknowledger or ConsoleAcknowledger()
        self.names = names
        self.fetch_size = fetch_size
        self.log_tail = log_tail
        self.rng = rng or random.Random()
        self._container_manager_factory = container_manager_factory or (
            lambda run_id: ContainerManager(run_id=run_id)
        )
        self._supervisor_factory = supervisor_factory
        self._port_allocator = port_allocator

        self.container_mgr: ContainerManager | None = None
        self.supervisor: ConnectionSupervisor | None = None
        self.descriptor: ContainerDescriptor | None = None
        self.handle: ConnectionHandle | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        """Execute the full reproduction and always tear down."""
        result = RunResult(
            run_id=self.run_id,
            container_name=self.config.name,
            host=self.config.host,
        )
        result.status = RunStatus.RUNNING

        with LogContext(run_id=self.run_id):
            logger.info("run.started", container=self.config.name, keyspace=self.config.keyspace)
            try:
                port = self._step(result, "allocate_port", self._resolve_port)
                result.port = port
                self._step(result, "provision", lambda: self._provision(port))
                self._step(result, "wait_until_ready", lambda: self._wait_until_ready(port))
                self._step(result, "ensure_keyspace", self._ensure_keyspace)
                self._step(result, "open_session", self._open_session)
                self._step(result, "ensure_table", self._ensure_table)
                result.seeded = self._step(result, "seed", self._seed)
                self._step(result, "scan_sequence", lambda: self._scan_sequence(result))
            except ReproError as exc:
                result.error = exc.to_dict()
                logger.error("run.failed", **exc.to_dict())
            except Exception as exc:
                result.error = {"error_type": type(exc).__name__, "message": str(exc)}
                logger.exception("run.crashed", error=str(exc))
            finally:
                self._teardown(result)
                result.mark_complete()

            logger.info("run.complete", status=result.status.value, summary=result.summary)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step(self, result: RunResult, name: str, action: Callable[[], T]) -> T:
        start = time.perf_counter()
        logger.info("step.started", step=name)
        try:
            value = action()
        except ReproError as exc:
            exc.with_context(step=name, run_id=self.run_id)
            result.steps.append(
                StepResult(
                    name=name,
                    status="failed",
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error=exc.to_dict(),
                )
            )
            raise
        except Exception as exc:
            result.steps.append(
                StepResult(
                    name=name,
                    status="failed",
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error={"error_type": type(exc).__name__, "message": str(exc)},
                )
            )
            raise
        result.steps.append(
            StepResult(name=name, duration_ms=(time.perf_counter() - start) * 1000)
        )
        return value

    def _resolve_port(self) -> int:
        if self.config.port is not None:
            return self.config.port
        return self._port_allocator()

    def _provision(self, port: int) -> ContainerDescriptor:
        self.container_mgr = self._container_manager_factory(self.run_id)
        self.descriptor = self.container_mgr.provision(self.config.name, port)
        return self.descriptor

    def _wait_until_ready(self, port: int) -> int:
        self.supervisor = self._supervisor_factory(
            ConnectionConfig.from_environment(self.config, port)
        )
        return self.supervisor.wait_until_ready(self.config.host, port, self.config.timeout)

    def _ensure_keyspace(self) -> Any:
        assert self.supervisor is not None
        return SchemaBootstrapper(self.supervisor).ensure_keyspace(self.config.keyspace)

    def _open_session(self) -> ConnectionHandle:
        assert self.supervisor is not None
        self.handle = self.supervisor.connect()
        return self.handle

    def _ensure_table(self) -> Any:
        assert self.supervisor is not None and self.handle is not None
        return SchemaBootstrapper(self.supervisor).ensure_table(
            self.handle.session, USERS_TABLE, self.config.keyspace
        )

    def _seed(self) -> int:
        assert self.handle is not None
        users = build_users(self.names, rng=self.rng)
        return seed_users(self.handle.session, USERS_TABLE, users)

    def _scan_sequence(self, result: RunResult) -> None:
        assert self.handle is not None
        scanner = PagedScanner(self.handle.session, fetch_size=self.fetch_size)

        self._scan(result, scanner, "all", 0)
        first = self._scan(result, scanner, "one", 1)
        self._scan(result, scanner, "all_again", 0)

        try:
            self._scan(result, scanner, "next_five", 5, first.next_token)
        except KnownDefectError as exc:
            self._report_defect(result, exc)

    def _scan(
        self,
        result: RunResult,
        scanner: PagedScanner,
        label: str,
        cap: int,
        token: bytes | None = None,
    ) -> ScanPage:
        summary = ScanSummary(label=label, page_size_cap=cap, resumed=bool(token))
        result.scans.append(summary)
        try:
            page = scanner.scan(USERS_TABLE, cap, token)
        except ReproError as exc:
            summary.error = exc.message
            raise
        summary.records = [
            {"first_name": r.first_name, "last_name": r.last_name, "age": r.age}
            for r in page.records
        ]
        summary.has_next_token = not page.exhausted
        for record in page.records:
            logger.info("scan.record", scan=label, first_name=record.first_name,
                        last_name=record.last_name, age=record.age)
        return page

    def _report_defect(self, result: RunResult, exc: KnownDefectError) -> None:
        result.defect_detected = True
        message = (
            f"Got a NullPointerException. Run 'docker logs {self.config.name}' "
            "in another window to see the stacktrace."
        )
        result.defect_message = message
        logger.warning("defect.reproduced", error=exc.message, container=self.config.name)

        if self.container_mgr is not None:
            try:
                result.container_logs = self.container_mgr.collect_logs(
                    self.config.name, tail=self.log_tail
                )
            except ContainerError as log_exc:
                logger.warning("defect.logs_unavailable", error=log_exc.message)

        self.acknowledger.acknowledge(message)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _teardown(self, result: RunResult) -> None:
        """Close the session and destroy the container. Never raises."""
        start = time.perf_counter()
        step = StepResult(name="teardown")

        if self.supervisor is not None:
            try:
                self.supervisor.close(self.handle)
            except Exception as exc:
                logger.warning("teardown.session_close_failed", error=str(exc))
        self.handle = None

        if self.container_mgr is None:
            # Provisioning never got far enough to build a manager.
            try:
                self.container_mgr = self._container_manager_factory(self.run_id)
            except ContainerError as exc:
                logger.warning("teardown.no_runtime", error=exc.message)
                result.teardown_error = exc.to_dict()
                step.status = "failed"
                step.error = exc.to_dict()
                self._finish_teardown(result, step, start)
                return

        try:
            descriptor = self.container_mgr.current or self.container_mgr.locate(self.config.name)
            self.container_mgr.destroy(descriptor.container_id)
            result.container_removed = True
        except ContainerNotFoundError:
            logger.info("teardown.nothing_to_remove", container=self.config.name)
            result.container_removed = True
        except ContainerError as exc:
            logger.warning("teardown.failed", container=self.config.name, **exc.to_dict())
            result.teardown_error = exc.to_dict()
            step.status = "failed"
            step.error = exc.to_dict()

        self._finish_teardown(result, step, start)

    @staticmethod
    def _finish_teardown(result: RunResult, step: StepResult, start: float) -> None:
        step.duration_ms = (time.perf_counter() - start) * 1000
        result.steps.append(step)


def teardown_by_name(name: str, manager: ContainerManager | None = None) -> bool:
    """Destroy a leftover container by name. Returns False if none existed."""
    manager = manager or ContainerManager()
    try:
        descriptor = manager.locate(name)
    except ContainerNotFoundError:
        logger.info("teardown.nothing_to_remove", container=name)
        return False
    manager.destroy(descriptor.container_id)
    return True


__all__ = ["ReproductionDriver", "teardown_by_name"]
