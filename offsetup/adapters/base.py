"""
Adapter base — the contract between the engine and the machine.

Package managers, the container runtime, the download pipeline and the
provisioning clients are all adapters. The engine reaches them only
through the registry, with an Action, and only ever gets a Receipt back.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from offsetup.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """What an adapter sees of one dispatch."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: Action
    dry_run: bool = False
    params: dict[str, Any] = Field(default_factory=dict)
    cancel: threading.Event | None = None   # set on SIGINT; long operations poll it

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


class Adapter(ABC):
    """One capability, registered under ``name``.

    Implementations must not raise out of ``execute``: a failure is a
    Receipt with status ``failed`` and an ``error_kind``. A capability
    missing on this machine says so from ``is_available`` and is never
    executed.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Capability name actions refer to (``apt``, ``docker``, ``artifact``)."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists here. Cheap, never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check the params before anything runs.

        Returns:
            (is_valid, error_message), the message empty when valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Perform the action."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
