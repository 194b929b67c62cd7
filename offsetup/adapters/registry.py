"""
Adapter registry — the engine's only route to the system.

Actions name their capability (``apt``, ``docker``, ``artifact``, ...);
the registry finds the adapter for that name and turns every possible
outcome into a Receipt:

    no such adapter / probe says no   → unavailable (CapabilityUnavailableError)
    validation rejects the params     → failed
    dry run                           → skipped, after validation
    adapter raises                    → failed
    otherwise                         → whatever the adapter returned

Availability probes can be slow (``docker info``), so each adapter is
probed at most once per registry.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Named adapters plus the dispatch rules above.

    In mock mode every action goes to ``mock_adapter``, or succeeds
    outright when none is set; nothing touches the machine.
    """

    def __init__(self, mock_mode: bool = False, mock_adapter: Adapter | None = None):
        self._adapters: dict[str, Adapter] = {}
        self._probed: dict[str, bool] = {}
        self._probe_lock = threading.Lock()
        self._mock_mode = mock_mode
        self._mock_adapter = mock_adapter

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Replacing adapter %s", name)
        self._adapters[name] = adapter
        self._probed.pop(name, None)

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)
        self._probed.pop(name, None)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def is_available(self, name: str) -> bool:
        """Whether ``name`` is registered and its probe succeeds (cached)."""
        adapter = self._adapters.get(name)
        if adapter is None:
            return False
        with self._probe_lock:
            if name not in self._probed:
                self._probed[name] = _probe(adapter)
            return self._probed[name]

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter, for ``--verbose`` output."""
        return {
            name: {
                "name": name,
                "available": self.is_available(name),
                "type": type(adapter).__name__,
            }
            for name, adapter in self._adapters.items()
        }

    def execute_action(
        self,
        action: Action,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> Receipt:
        """Dispatch one action. Never raises."""
        started = time.monotonic()
        context = ExecutionContext(action=action, dry_run=dry_run, params=action.params, cancel=cancel)

        if self._mock_mode:
            if self._mock_adapter is None:
                return Receipt.success(
                    adapter=action.adapter,
                    action_id=action.id,
                    output=f"[mock] {action.adapter}:{action.id}",
                    metadata={"mock": True, "dry_run": dry_run},
                )
            adapter = self._mock_adapter
        else:
            if action.adapter not in self._adapters:
                return Receipt.missing(
                    adapter=action.adapter,
                    action_id=action.id,
                    reason=f"No adapter registered for '{action.adapter}'",
                )
            if not self.is_available(action.adapter):
                return Receipt.missing(
                    adapter=action.adapter,
                    action_id=action.id,
                    reason=f"'{action.adapter}' is not available on this machine",
                )
            adapter = self._adapters[action.adapter]

        problem = _validation_problem(adapter, context)
        if problem:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=problem,
                error_kind="ExecutionError",
            )

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] would run {action.adapter}:{action.id}",
                metadata={"dry_run": True},
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised on %s: %s", action.adapter, action.id, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
                error_kind="ExecutionError",
            )

        if not receipt.duration_ms:
            receipt.duration_ms = int((time.monotonic() - started) * 1000)
        return receipt


def _probe(adapter: Adapter) -> bool:
    try:
        return bool(adapter.is_available())
    except Exception as e:
        logger.debug("Availability probe of %s raised: %s", adapter.name, e)
        return False


def _validation_problem(adapter: Adapter, context: ExecutionContext) -> str:
    try:
        ok, message = adapter.validate(context)
    except Exception as e:
        return f"Validation error: {e}"
    return "" if ok else f"Validation failed: {message}"
