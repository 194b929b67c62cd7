"""
Action and Receipt — what the engine asks for, what it gets back.

One plan step becomes one Action, or one per strategy for an
application install. Adapters answer every Action with a Receipt;
failure is a receipt status, not an exception.

Receipt statuses:
    ok           the step's effect is in place
    skipped      nothing was done on purpose (dry run)
    failed       the capability ran and did not succeed
    unavailable  the capability is missing on this machine
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ReceiptStatus = Literal["ok", "skipped", "failed", "unavailable"]

UNAVAILABLE_KIND = "CapabilityUnavailableError"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """Work for one adapter."""

    id: str                              # step id, ``<step>:<strategy>`` for installs
    name: str = ""                       # step label, for logs
    adapter: str                         # capability name the registry looks up
    params: dict[str, Any] = Field(default_factory=dict)
    for_application: str | None = None   # None for platform-level steps


class Receipt(BaseModel):
    """Outcome of one Action."""

    adapter: str
    action_id: str
    status: ReceiptStatus = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: str | None = None   # OffsetupError subclass name

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def unavailable(self) -> bool:
        return self.status == "unavailable"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        error_kind: str = "ExecutionError",
        **kwargs: Any,
    ) -> Receipt:
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            error_kind=error_kind,
            **kwargs,
        )

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Nothing done; ``reason`` becomes the output."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **kwargs)

    @classmethod
    def missing(cls, adapter: str, action_id: str, reason: str, **kwargs: Any) -> Receipt:
        """The capability isn't present; install strategies move on."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="unavailable",
            error=reason,
            error_kind=UNAVAILABLE_KIND,
            **kwargs,
        )
