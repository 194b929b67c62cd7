"""
Install use case — the full vertical slice.

    load manifest → override priority → detect runtime → select platform
    → plan → execute → append report

Everything before execution is pure and fails fast: resolution,
selection and config errors come back as ``InstallResult.error``
before any side effect has happened.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from offsetup.adapters.artifacts import ArtifactAdapter
from offsetup.adapters.containers.docker import DockerAdapter
from offsetup.adapters.packages.manager import MANAGERS, PackageManagerAdapter
from offsetup.adapters.provisioning import EnvBindAdapter, PortAdapter, ProvisioningAdapter
from offsetup.adapters.registry import AdapterRegistry
from offsetup.adapters.shell.command import ShellCommandAdapter
from offsetup.adapters.transport.http import HttpTransport
from offsetup.core.config.loader import find_manifest_file, load_manifest
from offsetup.core.config.settings import EngineSettings
from offsetup.core.engine.executor import ExecutionEngine, ExecutionReport
from offsetup.core.environ import EnvironmentAccessor
from offsetup.core.errors import ExecutionError, OffsetupError
from offsetup.core.models.manifest import Manifest
from offsetup.core.models.plan import InstallPlan
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.persistence.report import ReportEntry, ReportWriter
from offsetup.core.services.detection import detect_runtime
from offsetup.core.services.pipeline import ArtifactPipeline
from offsetup.core.services.planner import build_plan
from offsetup.core.services.selector import Selection, select_platform

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Result of planning (and possibly executing) an install."""

    manifest: Manifest | None = None
    config_path: Path | None = None
    runtime: RuntimeDescriptor | None = None
    selection: Selection | None = None
    plan: InstallPlan | None = None
    report: ExecutionReport | None = None
    report_path: Path | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return self.report.exit_code if self.report else 0

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error, "error_kind": self.error_kind}

        result: dict = {
            "manifest": self.manifest.name if self.manifest else "",
            "config_path": str(self.config_path) if self.config_path else None,
            "runtime": self.runtime.model_dump() if self.runtime else None,
            "platform": self.selection.name if self.selection else None,
            "matched_constraint": self.selection.matched_constraint if self.selection else None,
        }
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def default_registry(settings: EngineSettings, environ: EnvironmentAccessor) -> AdapterRegistry:
    """Registry wired with the real adapters."""
    registry = AdapterRegistry()
    registry.register(ShellCommandAdapter())
    for manager in MANAGERS:
        registry.register(PackageManagerAdapter(manager, use_sudo=settings.sudo))
    registry.register(DockerAdapter())
    registry.register(ArtifactAdapter(ArtifactPipeline(HttpTransport())))
    registry.register(ProvisioningAdapter())
    registry.register(EnvBindAdapter(environ))
    registry.register(PortAdapter())
    return registry


def plan_install(
    config_path: Path | None = None,
    settings: EngineSettings | None = None,
    runtime: RuntimeDescriptor | None = None,
) -> InstallResult:
    """Load, select and plan. No side effects.

    Args:
        config_path: Optional explicit path to offsetup.yml.
        settings: Engine settings (download dir, priority override).
        runtime: Runtime to plan for. Detected when None.
    """
    settings = settings or EngineSettings.from_env()
    result = InstallResult()

    try:
        if config_path is None:
            config_path = find_manifest_file()
        manifest = load_manifest(config_path)
        result.config_path = config_path

        if settings.install_priority:
            logger.info("Install priority overridden: %s", ", ".join(settings.install_priority))
            manifest = manifest.with_install_priority(settings.install_priority)
        result.manifest = manifest

        result.runtime = runtime or detect_runtime()
        result.selection = select_platform(manifest, result.runtime)
        result.plan = build_plan(
            manifest, result.selection, result.runtime, settings.download_dir
        )
    except OffsetupError as e:
        result.error = str(e)
        result.error_kind = e.kind
        return result

    return result


def run_install(
    config_path: Path | None = None,
    settings: EngineSettings | None = None,
    runtime: RuntimeDescriptor | None = None,
    registry: AdapterRegistry | None = None,
    environ: EnvironmentAccessor | None = None,
    cancel: threading.Event | None = None,
    write_report: bool = True,
) -> InstallResult:
    """Plan and execute an install for this machine.

    Args:
        config_path: Optional explicit path to offsetup.yml.
        settings: Engine settings; read from OFFSETUP_* when None.
        runtime: Runtime to install for. Detected when None.
        registry: Optional pre-configured adapter registry.
        environ: Environment accessor for bindings and credentials.
        cancel: Cooperative cancel signal (set on SIGINT by the CLI).
        write_report: Append the report to the ledger.

    Returns:
        InstallResult with the plan and the execution report.
    """
    settings = settings or EngineSettings.from_env()
    environ = environ or EnvironmentAccessor()

    result = plan_install(config_path, settings, runtime)
    if result.error:
        return result
    assert result.plan is not None

    if registry is None:
        registry = default_registry(settings, environ)

    engine = ExecutionEngine(
        registry,
        environ=environ,
        concurrency=settings.concurrency,
        dry_run=settings.dry_run,
        cancel=cancel,
    )
    try:
        result.report = engine.run(result.plan)
    except ExecutionError as e:
        result.error = str(e)
        result.error_kind = e.kind
        return result

    if write_report:
        writer = ReportWriter(Path(settings.report_file))
        if writer.write(ReportEntry.from_report(result.report)):
            result.report_path = writer.path

    return result
