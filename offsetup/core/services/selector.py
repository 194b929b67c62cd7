"""
Platform selector — pick the manifest branch for this runtime.

Matching is by OS name (case-insensitive, no aliasing), then version
constraints, then architecture. Every failure is fatal: without a
selected platform no plan can be built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from offsetup.core.errors import (
    UnsupportedArchError,
    UnsupportedPlatformError,
    UnsupportedVersionError,
)
from offsetup.core.models.manifest import SHARED_PREFIX, Manifest, PlatformSpec
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.services.detection import normalize_arch
from offsetup.core.services.versions import first_match

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """The chosen platform branch and why it matched."""

    name: str
    spec: PlatformSpec
    matched_constraint: str | None = None


def select_platform(manifest: Manifest, runtime: RuntimeDescriptor) -> Selection:
    """Select the platform branch matching ``runtime``.

    An empty ``versions`` list accepts any OS version.

    Raises:
        UnsupportedPlatformError: no branch is keyed by the runtime OS.
        UnsupportedVersionError: no version constraint matches.
        UnsupportedArchError: the branch pins another architecture.
        InvalidVersionError: a constraint or the runtime version is malformed.
    """
    wanted = runtime.os_name.lower()
    name = next(
        (
            key for key in manifest.platforms
            if not key.startswith(SHARED_PREFIX) and key.lower() == wanted
        ),
        None,
    )
    if name is None:
        available = ", ".join(sorted(manifest.platforms)) or "none"
        raise UnsupportedPlatformError(
            f"No platform '{runtime.os_name}' in manifest (available: {available})"
        )

    spec = manifest.platforms[name]

    matched: str | None = None
    if spec.versions:
        matched = first_match(spec.versions, runtime.os_version)
        if matched is None:
            raise UnsupportedVersionError(
                f"{name} {runtime.os_version} matches none of: {', '.join(spec.versions)}"
            )

    if spec.arch and normalize_arch(spec.arch) != normalize_arch(runtime.arch):
        raise UnsupportedArchError(
            f"{name} requires arch {spec.arch}, runtime is {runtime.arch}"
        )

    logger.info("Selected platform %s (constraint %s)", name, matched or "any")
    return Selection(name=name, spec=spec, matched_constraint=matched)
