"""
Mock adapter — stands in for any capability in tests.

Register one per capability name (``apt``, ``docker``, ``artifact``, ...)
and the engine can be driven end to end without touching the machine.
Every execution is recorded; individual action IDs can be scripted to
fail or to return a prepared receipt, and the whole capability can be
switched off to exercise strategy fallback.
"""

from __future__ import annotations

import threading

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.core.models.action import Receipt


class MockAdapter(Adapter):
    """Succeeds by default; see ``set_failure`` / ``set_response``."""

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._scripted: dict[str, Receipt] = {}
        self._calls: list[ExecutionContext] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """Contexts received by ``execute``, in call order."""
        with self._lock:
            return list(self._calls)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self._calls)

    def executed_ids(self) -> list[str]:
        return [ctx.action.id for ctx in self.call_log]

    # ── Scripting ───────────────────────────────────────────────

    def set_available(self, available: bool) -> None:
        self._available = available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        self._scripted[action_id] = receipt

    def set_failure(
        self,
        action_id: str,
        error: str = "Mock failure",
        error_kind: str = "PackageManagerError",
    ) -> None:
        self._scripted[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
            error_kind=error_kind,
        )

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
        self._scripted.clear()

    # ── Adapter ─────────────────────────────────────────────────

    def is_available(self) -> bool:
        return self._available

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        with self._lock:
            self._calls.append(context)

        scripted = self._scripted.get(context.action.id)
        if scripted is not None:
            return scripted.model_copy()
        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            metadata={"mock": True},
        )
