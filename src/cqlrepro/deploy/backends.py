"""Backing-service image specification.

The defect is specific to the Cassandra 3.11.1 server paired with the
driver's paging, so the image and tag are pinned. ``BackendSpec`` keeps the
frozen-dataclass shape so the container manager never hard-codes image
details.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BackendSpec:
    """Specification for the database container."""

    name: str
    """Short name (e.g., 'cassandra')."""

    repository: str
    """Image repository."""

    tag: str
    """Pinned image tag."""

    port: int
    """Internal container port of the CQL endpoint."""

    env: dict[str, str] = field(default_factory=dict)
    """Environment variables for the container."""

    @property
    def image(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def port_spec(self) -> str:
        return f"{self.port}/tcp"


CASSANDRA = BackendSpec(
    name="cassandra",
    repository="cassandra",
    tag="3.11.1",
    port=9042,
    env={"CASSANDRA_BROADCAST_ADDRESS": "127.0.0.1"},
)


__all__ = ["CASSANDRA", "BackendSpec"]
