"""
Runtime descriptor — what machine are we bootstrapping.

Produced by ``core/services/detection.py`` (or built by hand in tests)
and consumed by the platform selector.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class RuntimeDescriptor(BaseModel):
    """Detected OS name, OS version and CPU architecture."""

    model_config = ConfigDict(frozen=True)

    os_name: str
    os_version: str
    arch: str = "x86_64"

    def __str__(self) -> str:
        return f"{self.os_name} {self.os_version} ({self.arch})"
