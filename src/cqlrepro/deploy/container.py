"""Container lifecycle management for the backing database.

Provisions and destroys the ephemeral Cassandra container through the
``docker`` CLI (subprocess), which talks to the local daemon socket.

Why This Matters:
    A reproduction run must never leave a database container behind, even
    when it dies half-way through provisioning. ``provision()`` records the
    container as soon as ``docker create`` succeeds, ``locate()`` finds it
    again by name when the in-memory handle was lost, and ``destroy()`` is
    safe on containers that are already stopped or already gone.

Key Concepts:
    ContainerState: ``absent → pulling → created → running → stopping →
        removed`` (``stopped`` for containers found exited by ``locate()``).
    ContainerDescriptor: Identity, port mapping and lifecycle state.
    ContainerManager: ``provision()``, ``locate()``, ``destroy()``,
        ``collect_logs()``.

Architecture Decisions:
    - subprocess, not a Docker SDK: works with any runtime exposing a
      ``docker`` CLI and keeps each call visible in debug logs.
    - Explicit pull, create, start: each stage fails with its own
      ``ProvisionError.stage`` so the report says exactly what broke.
    - Label-based tracking: every container gets ``cqlrepro.*`` labels.

Best Practices:
    - Call ``destroy()`` from a ``finally`` block, or use
      ``ReproductionDriver`` which does so on every exit path.

Tags:
    container, docker, lifecycle, subprocess, teardown
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum

from cqlrepro.core.errors import (
    ContainerError,
    ContainerNotFoundError,
    DestroyError,
    DockerNotFoundError,
    ProvisionError,
)
from cqlrepro.core.logging import get_logger
from cqlrepro.deploy.backends import CASSANDRA, BackendSpec

logger = get_logger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 30
PULL_TIMEOUT_SECONDS = 900
LABEL_PREFIX = "cqlrepro"

_MISSING = re.compile(r"no such container", re.IGNORECASE)
_HOST_PORT = re.compile(r":(\d+)->(\d+)/tcp")


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class ContainerState(str, Enum):
    """Lifecycle state of the backing container."""

    ABSENT = "absent"
    PULLING = "pulling"
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"


_TRANSITIONS: dict[ContainerState, frozenset[ContainerState]] = {
    ContainerState.ABSENT: frozenset({ContainerState.PULLING}),
    ContainerState.PULLING: frozenset({ContainerState.CREATED}),
    ContainerState.CREATED: frozenset({ContainerState.RUNNING, ContainerState.STOPPING}),
    ContainerState.RUNNING: frozenset({ContainerState.STOPPING}),
    ContainerState.STOPPED: frozenset({ContainerState.STOPPING, ContainerState.RUNNING}),
    ContainerState.STOPPING: frozenset({ContainerState.STOPPED, ContainerState.REMOVED}),
    ContainerState.REMOVED: frozenset(),
}


@dataclass
class ContainerDescriptor:
    """Identity, port mapping and lifecycle state of one container."""

    name: str
    container_id: str
    image: str
    host_port: int | None
    internal_port: int
    state: ContainerState = ContainerState.CREATED
    created_at: float = field(default_factory=time.time)
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state is ContainerState.RUNNING

    def transition(self, new_state: ContainerState) -> None:
        """Move to ``new_state``; re-entering the current state is a no-op."""
        if new_state is self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise ContainerError(
                f"Invalid container transition {self.state.value} -> {new_state.value}"
            ).with_context(container=self.name)
        logger.debug(
            "container.transition",
            container=self.name,
            from_state=self.state.value,
            to_state=new_state.value,
        )
        self.state = new_state


def _state_from_docker(status: str) -> ContainerState:
    status = status.lower()
    if status == "running":
        return ContainerState.RUNNING
    if status == "created":
        return ContainerState.CREATED
    if status == "removing":
        return ContainerState.STOPPING
    return ContainerState.STOPPED


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ContainerManager:
    """Provisions and destroys the backing database container.

    Parameters
    ----------
    spec
        Image specification.
    docker_cmd
        Path of the docker CLI. Looked up on PATH when omitted.
    stop_grace_seconds
        Grace period given to ``docker stop`` before the container is killed.

    Example::

        mgr = ContainerManager()
        descriptor = mgr.provision("recreation", host_port=41923)
        try:
            ...
        finally:
            mgr.destroy(descriptor.container_id)
    """

    def __init__(
        self,
        spec: BackendSpec = CASSANDRA,
        *,
        docker_cmd: str | None = None,
        stop_grace_seconds: int = DEFAULT_STOP_GRACE_SECONDS,
        run_id: str | None = None,
    ) -> None:
        self.spec = spec
        self.stop_grace_seconds = stop_grace_seconds
        self.run_id = run_id
        self.state = ContainerState.ABSENT
        self.current: ContainerDescriptor | None = None
        self._docker_cmd = docker_cmd or self._find_docker()

    # ------------------------------------------------------------------
    # Docker CLI discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_docker() -> str:
        """Find the docker CLI binary."""
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH."
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def provision(self, name: str, host_port: int) -> ContainerDescriptor:
        """Pull the pinned image, create the container and start it.

        Raises
        ------
        ProvisionError
            ``stage`` is ``pulling``, ``created`` or ``running``. When creation
            succeeded, ``container_id`` is set and ``current`` still holds the
            descriptor so the caller can tear it down.
        """
        image = self.spec.image

        self._enter(ContainerState.PULLING)
        logger.info("container.pulling", image=image)
        try:
            result = self._run_docker(["pull", image], stage="pulling", timeout=PULL_TIMEOUT_SECONDS)
            if result.returncode != 0:
                raise ProvisionError(
                    f"Pulling {image} failed: {result.stderr.strip()}", stage="pulling"
                ).with_context(container=name)
        except ProvisionError:
            self.state = ContainerState.ABSENT
            raise

        labels = {f"{LABEL_PREFIX}.backend": self.spec.name}
        if self.run_id:
            labels[f"{LABEL_PREFIX}.run_id"] = self.run_id
        cmd = [
            "create",
            "--name", name,
            "--publish", f"{host_port}:{self.spec.port_spec}",
        ]
        for key, value in self.spec.env.items():
            cmd.extend(["--env", f"{key}={value}"])
        for key, value in labels.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.append(image)

        logger.info("container.creating", container=name, host_port=host_port)
        try:
            result = self._run_docker(cmd, stage="created")
            if result.returncode != 0:
                raise ProvisionError(
                    f"Creating container {name} failed: {result.stderr.strip()}", stage="created"
                ).with_context(container=name)
        except ProvisionError:
            self.state = ContainerState.ABSENT
            raise

        container_id = result.stdout.strip()[:12]
        self.current = ContainerDescriptor(
            name=name,
            container_id=container_id,
            image=image,
            host_port=host_port,
            internal_port=self.spec.port,
            labels=labels,
        )
        self.state = ContainerState.CREATED

        logger.info("container.starting", container=name, container_id=container_id)
        result = self._run_docker(["start", container_id], stage="running", container_id=container_id)
        if result.returncode != 0:
            raise ProvisionError(
                f"Starting container {name} failed: {result.stderr.strip()}",
                stage="running",
                container_id=container_id,
            ).with_context(container=name)

        self.current.transition(ContainerState.RUNNING)
        self.state = ContainerState.RUNNING
        logger.info("container.provisioned", container=name, container_id=container_id, host_port=host_port)
        return self.current

    def locate(self, name: str) -> ContainerDescriptor:
        """Find a container by name among all containers, running or not.

        Raises
        ------
        ContainerNotFoundError
            When no container has that name.
        """
        result = self._run_docker(
            ["ps", "--all", "--no-trunc", "--filter", f"name=^/?{name}$", "--format", "{{json .}}"],
        )
        if result.returncode != 0:
            raise ContainerError(
                f"Listing containers failed: {result.stderr.strip()}"
            ).with_context(container=name)

        for line in result.stdout.strip().splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("container.list_unparsable", line=line)
                continue
            names = [n.lstrip("/") for n in str(entry.get("Names", "")).split(",")]
            if name not in names:
                continue
            port_match = _HOST_PORT.search(str(entry.get("Ports", "")))
            descriptor = ContainerDescriptor(
                name=name,
                container_id=str(entry.get("ID", ""))[:12],
                image=str(entry.get("Image", "")),
                host_port=int(port_match.group(1)) if port_match else None,
                internal_port=int(port_match.group(2)) if port_match else self.spec.port,
                state=_state_from_docker(str(entry.get("State", ""))),
            )
            logger.info(
                "container.located",
                container=name,
                container_id=descriptor.container_id,
                state=descriptor.state.value,
            )
            return descriptor

        raise ContainerNotFoundError(f"No container named {name!r}").with_context(container=name)

    def destroy(self, container_id: str) -> None:
        """Stop (bounded grace period) then force-remove the container and its volumes.

        Safe on containers that are already stopped or already removed.

        Raises
        ------
        DestroyError
            When removal fails for any reason other than the container being gone.
        """
        descriptor = self.current if self.current and self.current.container_id == container_id else None
        if descriptor is not None and descriptor.state is ContainerState.REMOVED:
            return

        logger.info("container.destroying", container_id=container_id)
        if descriptor is not None:
            descriptor.transition(ContainerState.STOPPING)
        self.state = ContainerState.STOPPING

        try:
            stop = self._run_docker(
                ["stop", "--time", str(self.stop_grace_seconds), container_id],
                timeout=self.stop_grace_seconds + 30,
                error_type=DestroyError,
            )
        except DestroyError as exc:
            logger.warning("container.stop_failed", container_id=container_id, error=exc.message)
        else:
            if stop.returncode != 0 and not _MISSING.search(stop.stderr):
                logger.warning("container.stop_failed", container_id=container_id, error=stop.stderr.strip())

        rm = self._run_docker(
            ["rm", "--force", "--volumes", container_id],
            error_type=DestroyError,
        )
        if rm.returncode != 0:
            if not _MISSING.search(rm.stderr):
                raise DestroyError(
                    f"Removing container {container_id} failed: {rm.stderr.strip()}"
                ).with_context(container=container_id)
            logger.info("container.already_removed", container_id=container_id)

        if descriptor is not None:
            descriptor.transition(ContainerState.REMOVED)
        self.state = ContainerState.REMOVED
        logger.info("container.removed", container_id=container_id)

    def collect_logs(self, name: str, tail: int = 50) -> str:
        """Capture the last ``tail`` lines of a container's logs."""
        result = self._run_docker(["logs", "--tail", str(tail), name])
        return result.stdout + result.stderr

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _enter(self, state: ContainerState) -> None:
        if self.state not in (ContainerState.ABSENT, ContainerState.REMOVED):
            raise ContainerError(
                f"Cannot provision while a container is {self.state.value}"
            )
        self.state = state

    def _run_docker(
        self,
        args: list[str],
        *,
        stage: str | None = None,
        container_id: str | None = None,
        timeout: int = 60,
        error_type: type[ContainerError] = ContainerError,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command; a non-zero exit is left to the caller."""
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            message = f"Docker command failed: {' '.join(args)}: {exc}"
            if stage is not None:
                raise ProvisionError(message, stage=stage, container_id=container_id, cause=exc) from exc
            raise error_type(message, cause=exc) from exc


__all__ = [
    "ContainerDescriptor",
    "ContainerManager",
    "ContainerState",
]
