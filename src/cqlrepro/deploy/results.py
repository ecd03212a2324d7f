"""Structured results of a reproduction run.

Pydantic models so the CLI can print a table or dump JSON
(``model_dump_json()``) from the same object.

Key Concepts:
    RunStatus: REPRODUCED when the defect signature appeared,
        NOT_REPRODUCED when every scan succeeded, FAILED on any fatal error.
    StepResult: One orchestration step with status, timing and error.
    ScanSummary: One scan call of the sequence.
    RunResult: The whole run, including the earliest fatal error and the
        best-effort teardown outcome.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    REPRODUCED = "REPRODUCED"
    NOT_REPRODUCED = "NOT_REPRODUCED"
    FAILED = "FAILED"


class StepResult(BaseModel):
    """Outcome of one orchestration step."""

    name: str
    status: Literal["passed", "failed", "skipped"] = "passed"
    duration_ms: float = 0.0
    error: dict[str, Any] | None = None


class ScanSummary(BaseModel):
    """One scan call of the reproduction sequence."""

    label: str
    page_size_cap: int
    resumed: bool = False
    records: list[dict[str, Any]] = Field(default_factory=list)
    has_next_token: bool = False
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.records)


class RunResult(BaseModel):
    """Result of a full reproduction run."""

    run_id: str
    container_name: str
    host: str = "127.0.0.1"
    port: int | None = None
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    status: RunStatus = RunStatus.PENDING
    steps: list[StepResult] = Field(default_factory=list)
    scans: list[ScanSummary] = Field(default_factory=list)
    seeded: int = 0
    defect_detected: bool = False
    defect_message: str | None = None
    container_logs: str | None = None
    error: dict[str, Any] | None = None
    teardown_error: dict[str, Any] | None = None
    container_removed: bool = False

    @property
    def failed(self) -> bool:
        return self.status is RunStatus.FAILED

    def step(self, name: str) -> StepResult | None:
        return next((s for s in self.steps if s.name == name), None)

    def mark_complete(self) -> None:
        """Stamp completion time and derive the overall status."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()
        if self.error is not None:
            self.status = RunStatus.FAILED
        elif self.defect_detected:
            self.status = RunStatus.REPRODUCED
        else:
            self.status = RunStatus.NOT_REPRODUCED

    @property
    def summary(self) -> str:
        return (
            f"{self.status.value}: {len(self.scans)} scans, seeded {self.seeded}, "
            f"container {'removed' if self.container_removed else 'NOT removed'}"
        )


__all__ = ["RunResult", "RunStatus", "ScanSummary", "StepResult"]
