"""
Environment accessor — the only way core code touches process env vars.

Bindings (``env`` on applications) and ``$VAR`` credentials go through
an accessor injected into the engine, so tests substitute a plain dict.
"""

from __future__ import annotations

import os
from collections.abc import MutableMapping

# Credentials starting with this sigil are looked up, never used literally
ENV_SIGIL = "$"


class EnvironmentAccessor:
    """Read/write view over an environment mapping.

    Defaults to ``os.environ``; pass any mutable mapping to isolate.
    """

    def __init__(self, mapping: MutableMapping[str, str] | None = None):
        self._mapping = os.environ if mapping is None else mapping

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._mapping.get(name, default)

    def set(self, name: str, value: str) -> None:
        self._mapping[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._mapping

    def resolve_credential(self, value: str) -> str | None:
        """Resolve a credential that may be an env-var reference.

        ``"$DB_PASSWORD"`` → value of ``DB_PASSWORD`` (None if unset).
        Anything else is returned unchanged.
        """
        if is_env_reference(value):
            return self.get(value[len(ENV_SIGIL):].strip("{}"))
        return value


def is_env_reference(value: str | None) -> bool:
    """Whether a string is a ``$NAME`` / ``${NAME}`` reference."""
    return bool(value) and value.startswith(ENV_SIGIL) and len(value) > 1
