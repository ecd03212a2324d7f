"""Container lifecycle, configuration and orchestration of a reproduction run.

Key Concepts:
    EnvironmentConfig: ``CASSANDRA_13592_*`` settings, loaded once.
    ContainerManager: Provision, locate and destroy the database container.
    ReproductionDriver: Config in, ``RunResult`` out; always tears down.
    Acknowledger: Pluggable pause when the defect is reproduced.
"""

from __future__ import annotations

from cqlrepro.deploy.acknowledge import Acknowledger, ConsoleAcknowledger, NoopAcknowledger
from cqlrepro.deploy.backends import CASSANDRA, BackendSpec
from cqlrepro.deploy.config import EnvironmentConfig, load_config
from cqlrepro.deploy.container import ContainerDescriptor, ContainerManager, ContainerState
from cqlrepro.deploy.results import RunResult, RunStatus, ScanSummary, StepResult
from cqlrepro.deploy.workflow import ReproductionDriver, teardown_by_name

__all__ = [
    "CASSANDRA",
    "Acknowledger",
    "BackendSpec",
    "ConsoleAcknowledger",
    "ContainerDescriptor",
    "ContainerManager",
    "ContainerState",
    "EnvironmentConfig",
    "NoopAcknowledger",
    "ReproductionDriver",
    "RunResult",
    "RunStatus",
    "ScanSummary",
    "StepResult",
    "load_config",
    "teardown_by_name",
]
