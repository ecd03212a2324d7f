"""
Tests for ReproductionDriver.

The driver runs against ``FakeContainerManager`` and a real
``ConnectionSupervisor`` whose clusters come from ``FakeDatabase``, so the
full sequence (readiness, schema, seeding, scans, teardown) executes
without Docker or a server. Failures are injected at every step to check
that the container never outlives the run.
"""

from __future__ import annotations

import random

import pytest

from conftest import FakeContainerManager, FakeDatabase, npe_error


@pytest.fixture
def env_config(clean_env):
    from cqlrepro.deploy.config import load_config

    return load_config(timeout=3)


def _driver(config, db: FakeDatabase, manager: FakeContainerManager, **kwargs):
    from cqlrepro.cql.connection import ConnectionSupervisor
    from cqlrepro.deploy.acknowledge import NoopAcknowledger
    from cqlrepro.deploy.workflow import ReproductionDriver

    kwargs.setdefault("acknowledger", NoopAcknowledger())
    return ReproductionDriver(
        config,
        container_manager_factory=lambda run_id: manager,
        supervisor_factory=lambda cfg: ConnectionSupervisor(
            cfg, cluster_factory=db.cluster_factory, sleep=lambda _s: None
        ),
        port_allocator=lambda: 41923,
        rng=random.Random(13592),
        **kwargs,
    )


def _assert_released(db: FakeDatabase, manager: FakeContainerManager, result) -> None:
    assert manager.exists is False
    assert result.container_removed is True
    assert all(s.is_shutdown for s in db.sessions)
    assert all(c.is_shutdown for c in db.clusters)
    assert result.step("teardown").status == "passed"


# ===========================================================================
# Happy paths
# ===========================================================================


class TestSuccessfulRun:
    def test_not_reproduced(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.NOT_REPRODUCED
        assert result.error is None
        assert result.seeded == 12
        assert result.port == 41923
        assert [s.name for s in result.steps] == [
            "allocate_port",
            "provision",
            "wait_until_ready",
            "ensure_keyspace",
            "open_session",
            "ensure_table",
            "seed",
            "scan_sequence",
            "teardown",
        ]
        assert all(s.status == "passed" for s in result.steps)
        _assert_released(db, manager, result)

    def test_scan_sequence(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        result = _driver(env_config, db, manager).run()

        labels = [(s.label, s.page_size_cap, s.resumed) for s in result.scans]
        assert labels == [
            ("all", 0, False),
            ("one", 1, False),
            ("all_again", 0, False),
            ("next_five", 5, True),
        ]
        all_rows, one, all_again, next_five = result.scans
        assert all_rows.count == 12
        assert {r["last_name"] for r in all_rows.records} == {"smith"}
        assert all(20 <= r["age"] <= 49 for r in all_rows.records)
        assert one.count == 1
        assert one.has_next_token is True
        assert all_again.count == 12
        assert next_five.count == 5
        assert one.records[0] not in next_five.records

    def test_resumed_scan_uses_token_from_one_row_scan(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        _driver(env_config, db, manager).run()

        one, resumed = db.selects[1], db.selects[-1]
        assert one.fetch_size == 1
        assert one.paging_state is None
        assert resumed.fetch_size == 5
        assert resumed.paging_state == b"offset:1"

    def test_configured_port_skips_allocation(self, clean_env):
        from cqlrepro.deploy.config import load_config

        db, manager = FakeDatabase(), FakeContainerManager()
        result = _driver(load_config(port=19042, timeout=3), db, manager).run()

        assert result.port == 19042
        assert manager.calls[0] == ("provision", "recreation", 19042)
        assert db.clusters[0].kwargs["port"] == 19042

    def test_schema_reused_on_existing_keyspace(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()
        db.add_rows([])
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.NOT_REPRODUCED
        assert db.ddl == []


# ===========================================================================
# Defect reproduction
# ===========================================================================


class TestDefectReproduced:
    def test_defect_is_reported_and_acknowledged(self, env_config):
        from cqlrepro.deploy.acknowledge import NoopAcknowledger
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()
        db.resume_error = npe_error()
        acknowledger = NoopAcknowledger()
        result = _driver(env_config, db, manager, acknowledger=acknowledger).run()

        assert result.status is RunStatus.REPRODUCED
        assert result.defect_detected is True
        assert result.error is None
        assert result.defect_message == (
            "Got a NullPointerException. Run 'docker logs recreation' "
            "in another window to see the stacktrace."
        )
        assert acknowledger.messages == [result.defect_message]
        assert "NullPointerException" in result.container_logs
        assert result.scans[-1].error is not None
        assert result.step("scan_sequence").status == "passed"
        _assert_released(db, manager, result)

    def test_logs_collected_before_teardown(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        db.resume_error = npe_error()
        _driver(env_config, db, manager, log_tail=20).run()

        names = [c[0] for c in manager.calls]
        assert names.index("collect_logs") < names.index("destroy")
        assert ("collect_logs", "recreation", 20) in manager.calls

    def test_defect_in_earlier_scan_is_fatal(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()
        db.select_error = npe_error()
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.FAILED
        assert result.error["error_type"] == "KnownDefectError"
        assert result.defect_detected is False
        assert len(result.scans) == 1
        _assert_released(db, manager, result)


# ===========================================================================
# Failure injection: the container never outlives the run
# ===========================================================================


class TestFailuresAlwaysTearDown:
    def test_pull_failure(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager(fail_stage="pulling")
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.FAILED
        assert result.error["error_type"] == "ProvisionError"
        assert result.error["stage"] == "pulling"
        assert result.error["context"]["step"] == "provision"
        assert manager.exists is False
        assert result.container_removed is True
        assert db.clusters == []

    def test_start_failure_removes_created_container(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager(fail_stage="running")
        result = _driver(env_config, db, manager).run()

        assert result.error["stage"] == "running"
        assert ("destroy", "c0ffee000001") in manager.calls
        _assert_released(db, manager, result)

    def test_lost_descriptor_is_found_by_name(self, env_config):
        db = FakeDatabase()
        manager = FakeContainerManager(fail_stage="running", lose_descriptor=True)
        result = _driver(env_config, db, manager).run()

        assert ("locate", "recreation") in manager.calls
        _assert_released(db, manager, result)

    def test_readiness_timeout(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()
        db.unreachable_attempts = 100
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.FAILED
        assert result.error["error_type"] == "ReadinessTimeoutError"
        assert result.error["attempts"] == 3
        assert db.connect_attempts == 3
        _assert_released(db, manager, result)

    def test_schema_failure(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        db.ddl_error = RuntimeError("Unauthorized")
        result = _driver(env_config, db, manager).run()

        assert result.error["error_type"] == "SchemaError"
        assert result.error["context"]["step"] == "ensure_keyspace"
        _assert_released(db, manager, result)

    def test_session_failure(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        db.refused_keyspaces.add("recreation")
        result = _driver(env_config, db, manager).run()

        assert result.error["error_type"] == "DatabaseConnectionError"
        assert result.error["context"]["step"] == "open_session"
        _assert_released(db, manager, result)

    def test_seed_failure(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        db.insert_error = RuntimeError("WriteTimeout")
        result = _driver(env_config, db, manager).run()

        assert result.error["error_type"] == "DatabaseError"
        assert result.scans == []
        _assert_released(db, manager, result)

    def test_scan_failure(self, env_config):
        db, manager = FakeDatabase(), FakeContainerManager()
        db.select_error = RuntimeError("ReadTimeout")
        result = _driver(env_config, db, manager).run()

        assert result.error["error_type"] == "ScanError"
        assert result.error["context"]["step"] == "scan_sequence"
        _assert_released(db, manager, result)

    def test_unexpected_exception(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db, manager = FakeDatabase(), FakeContainerManager()

        def broken_allocator():
            raise RuntimeError("no free ports")

        from cqlrepro.cql.connection import ConnectionSupervisor
        from cqlrepro.deploy.acknowledge import NoopAcknowledger
        from cqlrepro.deploy.workflow import ReproductionDriver

        driver = ReproductionDriver(
            env_config,
            container_manager_factory=lambda run_id: manager,
            supervisor_factory=lambda cfg: ConnectionSupervisor(cfg, cluster_factory=db.cluster_factory),
            acknowledger=NoopAcknowledger(),
            port_allocator=broken_allocator,
        )
        result = driver.run()

        assert result.status is RunStatus.FAILED
        assert result.error == {"error_type": "RuntimeError", "message": "no free ports"}
        assert result.step("allocate_port").status == "failed"
        assert ("locate", "recreation") in manager.calls


class TestTeardownFailures:
    def test_destroy_failure_is_recorded_not_raised(self, env_config):
        from cqlrepro.deploy.results import RunStatus

        db = FakeDatabase()
        manager = FakeContainerManager(destroy_error=True)
        result = _driver(env_config, db, manager).run()

        assert result.status is RunStatus.NOT_REPRODUCED
        assert result.teardown_error["error_type"] == "DestroyError"
        assert result.container_removed is False
        assert result.step("teardown").status == "failed"

    def test_earliest_error_is_kept(self, env_config):
        db = FakeDatabase()
        manager = FakeContainerManager(destroy_error=True)
        db.ddl_error = RuntimeError("Unauthorized")
        result = _driver(env_config, db, manager).run()

        assert result.error["error_type"] == "SchemaError"
        assert result.teardown_error["error_type"] == "DestroyError"

    def test_docker_missing_at_teardown(self, env_config):
        from cqlrepro.core.errors import DockerNotFoundError
        from cqlrepro.deploy.acknowledge import NoopAcknowledger
        from cqlrepro.deploy.results import RunStatus
        from cqlrepro.deploy.workflow import ReproductionDriver

        def no_docker(run_id):
            raise DockerNotFoundError("Docker CLI not found on PATH.")

        result = ReproductionDriver(
            env_config,
            container_manager_factory=no_docker,
            acknowledger=NoopAcknowledger(),
            port_allocator=lambda: 41923,
        ).run()

        assert result.status is RunStatus.FAILED
        assert result.error["error_type"] == "DockerNotFoundError"
        assert result.teardown_error["error_type"] == "DockerNotFoundError"


class TestTeardownByName:
    def test_removes_existing(self):
        from cqlrepro.deploy.workflow import teardown_by_name

        manager = FakeContainerManager()
        manager.exists = True
        assert teardown_by_name("recreation", manager) is True
        assert manager.exists is False

    def test_nothing_to_remove(self):
        from cqlrepro.deploy.workflow import teardown_by_name

        manager = FakeContainerManager()
        assert teardown_by_name("recreation", manager) is False
        assert [c[0] for c in manager.calls] == ["locate"]
