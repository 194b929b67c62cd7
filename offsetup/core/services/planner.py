"""
Install planner — turn the selected platform into an ordered plan.

Planning order:
    1. ``pre_install`` commands
    2. package-manager installs (manager order, then package order)
    3. source: download → build dependencies → install commands
    4. direct downloads (independent of each other)
    5. applications, in manifest order: install, users, databases, env
    6. exposed ports

Each step depends on the step before it, except the direct downloads
of rule 4, which all hang off the same predecessor so the engine may
fetch them concurrently; the step after them waits for all of them.

Pure computation: no I/O, no environment access.
"""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import PurePath
from typing import Any

from offsetup.core.models.manifest import ApplicationSpec, Artifact, Manifest, PlatformSpec
from offsetup.core.models.plan import (
    PHASE_APPLICATIONS,
    PHASE_DOWNLOADS,
    PHASE_PACKAGES,
    PHASE_PORTS,
    PHASE_PRE_INSTALL,
    PHASE_SOURCE,
    ApplicationInstall,
    CommandStep,
    DownloadExtract,
    InstallPlan,
    PackageManagerInstall,
    PortExpose,
    Step,
)
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.services.provisioner import ApplicationProvisioner
from offsetup.core.services.selector import Selection

logger = logging.getLogger(__name__)

STRATEGY_DOCKER = "docker"
STRATEGY_NATIVE = "native"
KNOWN_STRATEGIES = (STRATEGY_DOCKER, STRATEGY_NATIVE)

# Conventional package manager when a platform declares none
DEFAULT_MANAGERS: dict[str, str] = {
    "ubuntu": "apt",
    "debian": "apt",
    "mac": "brew",
    "windows": "choco",
    "fedora": "dnf",
    "centos": "dnf",
    "redhat": "dnf",
    "arch": "pacman",
    "manjaro": "pacman",
    "alpine": "apk",
    "opensuse": "zypper",
}

_SLUG_RE = re.compile(r"[^A-Za-z0-9_.@+-]+")


def _slug(text: str) -> str:
    return _SLUG_RE.sub("-", text).strip("-")[:60] or "step"


class _PlanBuilder:
    """Accumulates steps and wires ``depends_on`` from a moving frontier."""

    def __init__(self) -> None:
        self.steps: list[Step] = []
        self._ids: set[str] = set()
        self._frontier: list[str] = []

    def _unique(self, slug: str) -> str:
        base = _slug(slug)
        candidate, n = base, 2
        while candidate in self._ids:
            candidate = f"{base}#{n}"
            n += 1
        self._ids.add(candidate)
        return candidate

    def add(
        self,
        step_cls: type[Step],
        slug: str,
        extra_depends: list[str] | None = None,
        **fields: Any,
    ) -> Step:
        depends = list(self._frontier)
        for dep in extra_depends or []:
            if dep not in depends:
                depends.append(dep)
        step = step_cls(id=self._unique(slug), depends_on=depends, **fields)
        self.steps.append(step)
        self._frontier = [step.id]
        return step

    def add_parallel(self, items: list[tuple[type[Step], str, dict[str, Any]]]) -> list[Step]:
        """Add steps that share the current predecessor but not each other."""
        base = list(self._frontier)
        added = []
        for step_cls, slug, fields in items:
            step = step_cls(id=self._unique(slug), depends_on=list(base), **fields)
            self.steps.append(step)
            added.append(step)
        if added:
            self._frontier = [s.id for s in added]
        return added


def artifact_dir(download_dir: str, artifact: Artifact) -> str:
    """Collision-free, run-stable directory for one artifact.

    Keyed on checksum and URI together: two mirrors of the same file get
    separate directories, so their partial downloads never share a path.
    """
    identity = f"{artifact.sha512 or ''}\n{artifact.uri}"
    key = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]
    return str(PurePath(download_dir) / key)


def native_manager(platform_name: str, spec: PlatformSpec) -> str | None:
    """Manager used by the ``native`` strategy on this platform."""
    if spec.managers:
        return next(iter(spec.managers))
    return DEFAULT_MANAGERS.get(platform_name.lower())


def strategies_for(app: ApplicationSpec, spec: PlatformSpec) -> list[str]:
    """Application chain, else the platform chain, else native only."""
    return list(app.install_priority or spec.install_priority or [STRATEGY_NATIVE])


def build_plan(
    manifest: Manifest,
    selection: Selection,
    runtime: RuntimeDescriptor,
    default_download_dir: str,
) -> InstallPlan:
    """Build the ordered plan for the selected platform."""
    spec = selection.spec
    builder = _PlanBuilder()
    download_dir = spec.download_directory or default_download_dir

    # 1. pre_install
    for i, command in enumerate(spec.pre_install):
        builder.add(
            CommandStep,
            f"pre_install.{i}",
            phase=PHASE_PRE_INSTALL,
            command=command,
            stage="pre_install",
        )

    # 2. package managers
    for manager, packages in spec.managers.items():
        for pkg in packages:
            builder.add(
                PackageManagerInstall,
                f"{manager}.{pkg.name}",
                phase=PHASE_PACKAGES,
                manager=manager,
                package=pkg.name,
                sharable=pkg.sharable,
                stage="system",
            )

    # 3. source build
    if spec.source is not None:
        _plan_source(builder, spec, download_dir)

    # 4. direct downloads
    builder.add_parallel([
        (DownloadExtract, f"download.{artifact.filename}", _download_fields(
            artifact, download_dir, spec, stage="download"
        ))
        for artifact in spec.download
    ])

    # 5. applications
    provisioner = ApplicationProvisioner.for_manifest(manifest)
    manager = native_manager(selection.name, spec)
    for name, app in manifest.applications.items():
        if not (app.pkg or app.env or app.users or app.databases):
            logger.debug("Application %s names nothing to install or provision; skipping", name)
            continue
        install_id = None
        if app.skip_install:
            logger.debug("Application %s has skip_install; planning provisioning only", name)
        else:
            step = builder.add(
                ApplicationInstall,
                f"{name}.install",
                phase=PHASE_APPLICATIONS,
                application=name,
                fail_silently=app.fail_silently,
                name=name,
                pkg=app.pkg,
                version=app.version,
                features=app.features,
                strategies=strategies_for(app, spec),
                native_manager=manager,
            )
            install_id = step.id
        provisioner.add_steps(builder.add, name, app, install_id)

    # 6. ports
    for protocol, ports in manifest.exposes.ports.items():
        for port in ports:
            builder.add(
                PortExpose,
                f"port.{protocol}.{port}",
                phase=PHASE_PORTS,
                protocol=protocol,
                port=port,
            )

    plan = InstallPlan(
        manifest=manifest.name,
        platform=selection.name,
        runtime=runtime,
        steps=builder.steps,
    )
    logger.info("Planned %d step(s) for %s on %s", plan.total_steps, manifest.name, selection.name)
    return plan


def _download_fields(
    artifact: Artifact,
    download_dir: str,
    spec: PlatformSpec,
    stage: str,
) -> dict[str, Any]:
    return {
        "phase": PHASE_SOURCE if stage == "source" else PHASE_DOWNLOADS,
        "uri": artifact.uri,
        "sha512": artifact.sha512,
        "extract": artifact.extract,
        "target_dir": artifact_dir(download_dir, artifact),
        "filename": artifact.filename,
        "sharable": artifact.sharable,
        "install_prefix": spec.install_prefix if spec.install_all else None,
        "stage": stage,
    }


def _plan_source(builder: _PlanBuilder, spec: PlatformSpec, download_dir: str) -> None:
    source = spec.source
    assert source is not None
    source_dir = source.download_directory or download_dir
    workdir = None

    if source.download is not None:
        fields = _download_fields(source.download, source_dir, spec, stage="source")
        builder.add(DownloadExtract, f"source.{source.download.filename}", **fields)
        workdir = fields["target_dir"]

    for manager, packages in source.managers.items():
        for pkg in packages:
            builder.add(
                PackageManagerInstall,
                f"source.{manager}.{pkg.name}",
                phase=PHASE_SOURCE,
                manager=manager,
                package=pkg.name,
                sharable=pkg.sharable,
                stage="source_build",
            )

    for i, command in enumerate(source.install):
        builder.add(
            CommandStep,
            f"source.install.{i}",
            phase=PHASE_SOURCE,
            command=command,
            stage="source_install",
            cwd=workdir,
        )
