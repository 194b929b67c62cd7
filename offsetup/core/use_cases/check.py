"""
Check use case — validate offsetup.yml and report issues.

Errors make the manifest unusable (it would not load or select).
Warnings flag things that load fine but probably aren't intended.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from offsetup.core.config.loader import find_manifest_file, load_manifest
from offsetup.core.errors import OffsetupError
from offsetup.core.models.manifest import Manifest
from offsetup.core.services.pipeline import archive_format
from offsetup.core.services.planner import KNOWN_STRATEGIES
from offsetup.core.services.versions import parse_constraint


@dataclass
class CheckResult:
    """Result of manifest validation."""

    valid: bool = False
    manifest: Manifest | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "name": self.manifest.name if self.manifest else None,
            "platforms": sorted(self.manifest.platforms) if self.manifest else [],
            "applications": list(self.manifest.applications) if self.manifest else [],
        }


def check_manifest(config_path: Path | None = None) -> CheckResult:
    """Validate a manifest and report issues.

    Args:
        config_path: Optional explicit path to offsetup.yml.

    Returns:
        CheckResult with validation status and any issues.
    """
    result = CheckResult()

    try:
        if config_path is None:
            config_path = find_manifest_file()
        result.config_path = config_path
        manifest = load_manifest(config_path)
        result.manifest = manifest
    except OffsetupError as e:
        result.errors.append(str(e))
        return result

    if not manifest.platforms:
        result.warnings.append("No platforms defined. Nothing can be selected on any machine.")

    for name, spec in manifest.platforms.items():
        for constraint in spec.versions:
            try:
                parse_constraint(constraint)
            except OffsetupError as e:
                result.errors.append(f"platforms.{name}.versions: {e}")

        for strategy in spec.install_priority:
            if strategy not in KNOWN_STRATEGIES:
                result.warnings.append(
                    f"platforms.{name}.install_priority: unknown strategy '{strategy}'"
                )

        artifacts = list(spec.download)
        if spec.source and spec.source.download:
            artifacts.append(spec.source.download)
        for artifact in artifacts:
            if not artifact.sha512:
                result.warnings.append(
                    f"platforms.{name}: {artifact.uri} has no sha512 and is never verified"
                )
            if not artifact.extract and archive_format(artifact.filename):
                result.warnings.append(
                    f"platforms.{name}: {artifact.filename} looks like an archive "
                    "but is not marked extract"
                )

        if spec.install_all and not spec.install_prefix:
            result.warnings.append(f"platforms.{name}: install_all is set without install_prefix")

    users = {u.name for app in manifest.applications.values() for u in app.users}
    for app_name, app in manifest.applications.items():
        for strategy in app.install_priority:
            if strategy not in KNOWN_STRATEGIES:
                result.warnings.append(
                    f"applications.{app_name}.install_priority: unknown strategy '{strategy}'"
                )
        if app.version:
            try:
                parse_constraint(app.version)
            except OffsetupError as e:
                result.errors.append(f"applications.{app_name}.version: {e}")
        for db in app.databases:
            if db.owner and db.owner not in users:
                result.warnings.append(
                    f"applications.{app_name}.databases.{db.name}: owner '{db.owner}' "
                    "is not declared as a user; it must already exist"
                )

    result.valid = len(result.errors) == 0
    return result
