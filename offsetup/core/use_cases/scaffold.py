"""
Scaffold use case — write a starter offsetup.yml.

The starter targets the detected runtime: its platform branch pins the
current OS version as a lower bound and uses the platform's
conventional package manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from offsetup.core.config.loader import MANIFEST_FILE
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.services.detection import detect_runtime
from offsetup.core.services.planner import DEFAULT_MANAGERS

logger = logging.getLogger(__name__)


@dataclass
class ScaffoldResult:
    path: Path | None = None
    created: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {"path": str(self.path), "created": self.created}


def starter_document(name: str, runtime: RuntimeDescriptor) -> dict:
    """Starter manifest for ``runtime``."""
    platform: dict = {}
    if runtime.os_version:
        platform["versions"] = [f">={runtime.os_version}"]
    manager = DEFAULT_MANAGERS.get(runtime.os_name)
    if manager:
        platform[manager] = ["curl"]
    platform["install_priority"] = ["docker", "native"]

    return {
        "name": name,
        "version": "0.1.0",
        "dependencies": {
            "platforms": {runtime.os_name: platform},
            "applications": {
                "redis": {"env": "REDIS_URL", "fail_silently": True},
            },
        },
        "exposes": {"ports": {"tcp": [8080]}},
    }


def scaffold_manifest(
    directory: Path | None = None,
    name: str | None = None,
    force: bool = False,
    runtime: RuntimeDescriptor | None = None,
) -> ScaffoldResult:
    """Write ``offsetup.yml`` into ``directory``.

    Refuses to overwrite an existing manifest unless ``force``.
    """
    directory = (directory or Path.cwd()).resolve()
    path = directory / MANIFEST_FILE
    result = ScaffoldResult(path=path)

    if path.exists() and not force:
        result.error = f"{path} already exists (use --force to overwrite)"
        return result

    runtime = runtime or detect_runtime()
    document = starter_document(name or directory.name, runtime)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(document, sort_keys=False, default_flow_style=False),
            encoding="utf-8",
        )
    except OSError as e:
        result.error = f"Cannot write {path}: {e}"
        return result

    logger.info("Wrote starter manifest %s", path)
    result.created = True
    return result
