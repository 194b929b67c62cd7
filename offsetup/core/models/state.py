"""
Step state — the per-step state machine the engine drives.

    PENDING → RUNNING → {SUCCEEDED, FAILED, SKIPPED}

An application install cycles RUNNING across its strategies; each try
is recorded as a ``StrategyAttempt``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


class StrategyAttempt(BaseModel):
    """One strategy tried for a step (``docker``, ``native``, ...)."""

    strategy: str
    adapter: str
    status: str          # ok | failed | skipped (capability unavailable)
    error: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0


class StepResult(BaseModel):
    """Mutable execution state of one plan step."""

    step_id: str
    kind: str
    label: str = ""
    application: str | None = None
    status: StepStatus = StepStatus.PENDING
    error: str | None = None
    error_kind: str | None = None
    silenced: bool = False          # failed, but the owner is fail_silently
    cancelled: bool = False
    strategy: str | None = None     # strategy that settled the step
    attempts: list[StrategyAttempt] = Field(default_factory=list)
    output: str = ""
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def unblocks_dependents(self) -> bool:
        """Whether steps depending on this one may start."""
        if self.status in (StepStatus.SUCCEEDED, StepStatus.SKIPPED):
            return True
        return self.status == StepStatus.FAILED and self.silenced
