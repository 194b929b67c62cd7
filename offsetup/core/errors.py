"""
Error taxonomy — every failure the core can raise.

Resolution and selection errors abort a run before any side effect.
Pipeline and execution errors are step-scoped: the engine catches them
and records them on the step result (see ``core/engine/executor.py``).

Every error exposes ``kind``, the class name, which is what reports
and receipts carry as ``error_kind``.
"""

from __future__ import annotations


class OffsetupError(Exception):
    """Base class for all offsetup errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigError(OffsetupError):
    """Raised when the manifest file is missing, unreadable or invalid."""


# ── Resolution (fatal, before planning) ─────────────────────────


class ResolutionError(OffsetupError):
    """Base for ``$ref`` expansion failures."""


class CyclicReferenceError(ResolutionError):
    """A reference chain revisits a pointer already being resolved."""

    def __init__(self, pointer: str, stack: list[str] | None = None):
        self.pointer = pointer
        self.stack = list(stack or [])
        chain = " -> ".join([*self.stack, pointer])
        super().__init__(f"Cyclic reference: {chain}")


class UnresolvedReferenceError(ResolutionError):
    """A pointer does not resolve to an existing path."""

    def __init__(self, pointer: str, reason: str = ""):
        self.pointer = pointer
        msg = f"Unresolved reference: {pointer}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


# ── Selection (fatal, before planning) ──────────────────────────


class SelectionError(OffsetupError):
    """Base for platform/version selection failures."""


class InvalidVersionError(SelectionError):
    """A version or constraint string is malformed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid version: {value!r}")


class UnsupportedPlatformError(SelectionError):
    """No platform branch matches the runtime OS."""


class UnsupportedVersionError(SelectionError):
    """No declared version constraint matches the runtime OS version."""


class UnsupportedArchError(SelectionError):
    """The platform declares an architecture other than the runtime's."""


# ── Pipeline (step-scoped) ──────────────────────────────────────


class PipelineError(OffsetupError):
    """Base for artifact download/verify/extract failures."""


class ChecksumMismatchError(PipelineError):
    """Downloaded bytes do not hash to the declared sha512."""

    def __init__(self, uri: str, expected: str, actual: str):
        self.uri = uri
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {uri}: expected {expected[:16]}…, got {actual[:16]}…"
        )


class UnsupportedArchiveError(PipelineError):
    """The artifact is flagged for extraction but its format is unknown."""


class DownloadTransportError(PipelineError):
    """The transport could not retrieve the artifact."""


class CancelledError(PipelineError):
    """The run was cancelled while the step was in progress."""


# ── Execution (drive fallback / step-scoped) ────────────────────


class ExecutionError(OffsetupError):
    """Base for capability failures during execution."""


class PackageManagerError(ExecutionError):
    """A package manager or install strategy reported failure."""


class CapabilityUnavailableError(ExecutionError):
    """The capability needed by a strategy is not present on this machine."""


class ProvisioningError(ExecutionError):
    """User or database creation failed."""
