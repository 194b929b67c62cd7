"""
Manifest loader — reads offsetup.yml into a validated Manifest.

Reads YAML, expands ``$ref`` pointers, validates against the Pydantic
schema and returns the typed manifest. Reference errors propagate
unchanged (they are part of the error taxonomy); everything else that
makes the file unusable is a ConfigError.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from offsetup.core.config.references import resolve_references
from offsetup.core.errors import ConfigError
from offsetup.core.models.manifest import Manifest

logger = logging.getLogger(__name__)

# Default manifest filename
MANIFEST_FILE = "offsetup.yml"
_ALT_NAMES = ("offsetup.yaml",)


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for offsetup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the manifest, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        for name in (MANIFEST_FILE, *_ALT_NAMES):
            candidate = current / name
            if candidate.is_file():
                return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def read_document(path: Path) -> dict[str, Any]:
    """Read a manifest file into the raw keyed tree (no expansion)."""
    if not path.is_file():
        raise ConfigError(f"Manifest not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    return data


def parse_manifest(document: dict[str, Any], source: str = "<document>") -> Manifest:
    """Expand references in a raw tree and validate it.

    Raises:
        CyclicReferenceError, UnresolvedReferenceError: bad ``$ref``.
        ConfigError: the expanded tree does not fit the schema.
    """
    resolved = resolve_references(document)
    try:
        return Manifest.model_validate(resolved)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {source}: {e}") from e


def load_manifest(path: Path | None = None) -> Manifest:
    """Load, resolve and validate a manifest.

    Args:
        path: Explicit path to offsetup.yml. If None, searches upward.

    Returns:
        Validated Manifest model.
    """
    if path is None:
        path = find_manifest_file()

    if path is None:
        raise ConfigError(
            f"No {MANIFEST_FILE} found. "
            "Run 'offsetup new' to create one, or specify --config."
        )

    logger.debug("Loading manifest from %s", path)
    manifest = parse_manifest(read_document(path), source=str(path))

    logger.info(
        "Loaded manifest '%s' %s: %d platform(s), %d application(s)",
        manifest.name,
        manifest.version,
        len(manifest.platforms),
        len(manifest.applications),
    )
    return manifest
