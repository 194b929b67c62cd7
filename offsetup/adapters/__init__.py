"""Adapters — bindings to the machine being bootstrapped.

Public re-exports for convenient access.
"""

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.adapters.mock import MockAdapter
from offsetup.adapters.registry import AdapterRegistry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
]
