"""
Execution engine — drive an install plan to terminal states.

The engine walks the plan's dependency graph in waves: every step
whose predecessors have unblocked is ready; ready steps that don't
need the system package-manager lock run concurrently (bounded by
``concurrency``), a lock-holding step runs alone. Every step becomes
one Action (one per strategy for application installs) dispatched
through the adapter registry.

Per-step state machine:
    PENDING → RUNNING → {SUCCEEDED, FAILED, SKIPPED}

A non-silenced failure halts scheduling; later steps stay PENDING.
A failure of a ``fail_silently`` application is recorded and its
dependents run as if it had been skipped. Cancellation is cooperative:
checked between steps and, through the transport, during downloads.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from offsetup.adapters.registry import AdapterRegistry
from offsetup.core.environ import EnvironmentAccessor, is_env_reference
from offsetup.core.errors import ExecutionError, OffsetupError, ProvisioningError
from offsetup.core.models.action import Action, Receipt
from offsetup.core.models.plan import (
    ApplicationInstall,
    CommandStep,
    DatabaseProvision,
    DownloadExtract,
    EnvBind,
    InstallPlan,
    PackageManagerInstall,
    PortExpose,
    Step,
    UserProvision,
)
from offsetup.core.models.state import StepResult, StepStatus, StrategyAttempt
from offsetup.core.observability.redaction import register_secret
from offsetup.core.services import catalog
from offsetup.core.services.dag import (
    enforce_lock_safety,
    needs_system_lock,
    ready_steps,
    validate_dag,
)
from offsetup.core.services.planner import STRATEGY_DOCKER, STRATEGY_NATIVE

logger = logging.getLogger(__name__)

_MARKERS = {
    StepStatus.SUCCEEDED: "✓",
    StepStatus.FAILED: "✗",
    StepStatus.SKIPPED: "⊘",
}


@dataclass
class ExecutionReport:
    """Per-step terminal states of one run."""

    operation_id: str = ""
    manifest: str = ""
    platform: str = ""
    runtime: str = ""
    dry_run: bool = False
    cancelled: bool = False
    started_at: str = ""
    ended_at: str = ""
    results: list[StepResult] = field(default_factory=list)

    def _count(self, status: StepStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return self._count(StepStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        """Failures that count against the run (silenced ones don't)."""
        return sum(1 for r in self.results if r.status == StepStatus.FAILED and not r.silenced)

    @property
    def silenced(self) -> int:
        return sum(1 for r in self.results if r.status == StepStatus.FAILED and r.silenced)

    @property
    def skipped(self) -> int:
        return self._count(StepStatus.SKIPPED)

    @property
    def pending(self) -> int:
        return self._count(StepStatus.PENDING)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and not self.cancelled

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.all_ok else 1

    def get(self, step_id: str) -> StepResult | None:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "manifest": self.manifest,
            "platform": self.platform,
            "runtime": self.runtime,
            "dry_run": self.dry_run,
            "status": self.status,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "silenced": self.silenced,
            "skipped": self.skipped,
            "pending": self.pending,
            "steps": [r.model_dump(mode="json") for r in self.results],
        }


class ExecutionEngine:
    """Runs an ``InstallPlan`` through an ``AdapterRegistry``."""

    def __init__(
        self,
        registry: AdapterRegistry,
        environ: EnvironmentAccessor | None = None,
        concurrency: int = 4,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ):
        self._registry = registry
        self._environ = environ or EnvironmentAccessor()
        self._concurrency = max(1, concurrency)
        self._dry_run = dry_run
        self.cancel = cancel or threading.Event()
        self._system_lock = threading.Lock()
        self._results: dict[str, StepResult] = {}
        self._plan: InstallPlan | None = None

    # ── Run loop ────────────────────────────────────────────────

    def run(self, plan: InstallPlan, operation_id: str | None = None) -> ExecutionReport:
        errors = validate_dag(plan.steps)
        if errors:
            raise ExecutionError("Invalid plan: " + "; ".join(errors))

        self._plan = plan
        self._results = {
            step.id: StepResult(
                step_id=step.id,
                kind=step.kind,
                label=step.label,
                application=step.application,
            )
            for step in plan.steps
        }
        report = ExecutionReport(
            operation_id=operation_id or generate_operation_id(),
            manifest=plan.manifest,
            platform=plan.platform,
            runtime=str(plan.runtime),
            dry_run=self._dry_run,
            started_at=_now_iso(),
        )

        unblocked: set[str] = set()
        started: set[str] = set()
        halted = False

        with ThreadPoolExecutor(max_workers=self._concurrency) as pool:
            while not halted and not self.cancel.is_set():
                ready = ready_steps(plan.steps, unblocked, started)
                if not ready:
                    break
                wave = enforce_lock_safety(ready)
                started.update(step.id for step in wave)

                if len(wave) == 1:
                    self._run_step(wave[0])
                else:
                    logger.debug("Running %d steps concurrently", len(wave))
                    list(pool.map(self._run_step, wave))

                for step in wave:
                    result = self._results[step.id]
                    if result.unblocks_dependents:
                        unblocked.add(step.id)
                    elif result.status == StepStatus.FAILED:
                        logger.error("Halting: %s failed (%s)", step.label, result.error)
                        halted = True

        if self.cancel.is_set():
            report.cancelled = True
            for result in self._results.values():
                if result.status != StepStatus.SUCCEEDED:
                    result.status = StepStatus.SKIPPED
                    result.cancelled = True
            logger.warning("Run cancelled")

        report.results = [self._results[step.id] for step in plan.steps]
        report.ended_at = _now_iso()
        logger.info(
            "Run %s: %s (%d succeeded, %d failed, %d skipped, %d pending)",
            report.operation_id, report.status, report.succeeded,
            report.failed, report.skipped, report.pending,
        )
        return report

    def _run_step(self, step: Step) -> None:
        result = self._results[step.id]
        if self.cancel.is_set():
            return

        result.status = StepStatus.RUNNING
        start = time.monotonic()
        try:
            if needs_system_lock(step):
                with self._system_lock:
                    self._dispatch(step, result)
            else:
                self._dispatch(step, result)
        except OffsetupError as e:
            self._fail(result, str(e), e.kind)

        if result.status == StepStatus.RUNNING and not self.cancel.is_set():
            self._fail(result, "Step did not settle", "ExecutionError")
        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - start) * 1000)
        if result.status == StepStatus.FAILED and step.fail_silently:
            result.silenced = True
            logger.warning("%s failed silently: %s", step.label, result.error)

        logger.info("%s %s → %s", _MARKERS.get(result.status, "?"), step.label, result.status.value)

    # ── Dispatch per step kind ──────────────────────────────────

    def _dispatch(self, step: Step, result: StepResult) -> None:
        if isinstance(step, ApplicationInstall):
            self._install_application(step, result)
            return

        if isinstance(step, CommandStep):
            action = self._action(step, "shell", {"command": step.command, "cwd": step.cwd})
        elif isinstance(step, PackageManagerInstall):
            action = self._action(
                step, step.manager, {"package": step.package, "sharable": step.sharable}
            )
        elif isinstance(step, DownloadExtract):
            action = self._action(step, "artifact", {"step": step.model_dump(mode="json")})
        elif isinstance(step, EnvBind):
            action = self._action(step, "env", {"name": step.name, "value": self._binding_value(step)})
        elif isinstance(step, UserProvision):
            action = self._action(step, "provision", {
                "operation": "user",
                "application": step.application,
                "name": step.name,
                "password": self._credential(step),
                "install": self._install_metadata(step.application),
            })
        elif isinstance(step, DatabaseProvision):
            action = self._action(step, "provision", {
                "operation": "database",
                "application": step.application,
                "name": step.name,
                "owner": step.owner,
                "install": self._install_metadata(step.application),
            })
        elif isinstance(step, PortExpose):
            action = self._action(step, "ports", {"protocol": step.protocol, "port": step.port})
        else:
            raise ExecutionError(f"Unknown step kind: {step.kind}")

        receipt = self._registry.execute_action(action, dry_run=self._dry_run, cancel=self.cancel)
        self._settle(result, receipt)

    def _install_application(self, step: ApplicationInstall, result: StepResult) -> None:
        if step.skip_install:
            result.status = StepStatus.SKIPPED
            result.output = "skip_install"
            return

        for strategy in step.strategies:
            if self.cancel.is_set():
                return
            adapter, params = self._strategy_target(step, strategy)
            action = self._action(step, adapter, params, suffix=strategy)
            logger.debug("%s: trying strategy %s (%s)", step.name, strategy, adapter)
            receipt = self._registry.execute_action(action, dry_run=self._dry_run, cancel=self.cancel)

            attempt = StrategyAttempt(
                strategy=strategy,
                adapter=adapter,
                status="ok" if receipt.ok else "skipped" if receipt.status != "failed" else "failed",
                error=receipt.error,
                error_kind=receipt.error_kind,
                duration_ms=receipt.duration_ms,
            )
            result.attempts.append(attempt)

            if receipt.unavailable:
                logger.info("%s: strategy %s unavailable (%s)", step.name, strategy, receipt.error)
                continue
            if receipt.failed:
                logger.warning("%s: strategy %s failed: %s", step.name, strategy, receipt.error)
                continue

            result.strategy = strategy
            self._settle(result, receipt)
            result.metadata.setdefault("strategy", strategy)
            return

        if not step.strategies:
            self._fail(result, f"No install strategy for {step.name}", "CapabilityUnavailableError")
            return

        tried = "; ".join(f"{a.strategy}: {a.error}" for a in result.attempts)
        if all(a.error_kind == "CapabilityUnavailableError" for a in result.attempts):
            kind = "CapabilityUnavailableError"
        else:
            kind = "PackageManagerError"
        self._fail(result, f"All install strategies failed for {step.name} ({tried})", kind)

    def _strategy_target(self, step: ApplicationInstall, strategy: str) -> tuple[str, dict[str, Any]]:
        if strategy == STRATEGY_DOCKER:
            return "docker", {"operation": "install", "name": step.name, "version": step.version}
        if strategy == STRATEGY_NATIVE:
            manager = step.native_manager or STRATEGY_NATIVE
            return manager, {"package": catalog.package_for(step.name, manager)}
        return strategy, {
            "name": step.name,
            "pkg": step.pkg,
            "version": step.version,
            "features": step.features,
        }

    # ── Execution-time values ───────────────────────────────────

    def _binding_value(self, step: EnvBind) -> str:
        """Install receipt's connection URI, else the env, else the default."""
        if step.install_step:
            install = self._results.get(step.install_step)
            if install is not None and install.metadata.get("connection_uri"):
                return install.metadata["connection_uri"]
        existing = self._environ.get(step.name)
        if existing:
            return existing
        default = catalog.default_connection_uri(step.application or "")
        if default:
            return default
        raise ProvisioningError(f"No value to bind to ${step.name} for {step.application}")

    def _credential(self, step: UserProvision) -> str | None:
        if step.credential is None:
            return None
        if is_env_reference(step.credential):
            value = self._environ.resolve_credential(step.credential)
            if value is None:
                raise ProvisioningError(
                    f"Credential {step.credential} for user {step.name} is not set"
                )
        else:
            value = step.credential
        register_secret(value)
        return value

    def _install_metadata(self, application: str | None) -> dict[str, Any]:
        assert self._plan is not None
        for step in self._plan.steps:
            if isinstance(step, ApplicationInstall) and step.application == application:
                return dict(self._results[step.id].metadata)
        return {}

    # ── Helpers ─────────────────────────────────────────────────

    def _action(self, step: Step, adapter: str, params: dict[str, Any], suffix: str = "") -> Action:
        return Action(
            id=f"{step.id}:{suffix}" if suffix else step.id,
            name=step.label,
            adapter=adapter,
            params=params,
            for_application=step.application,
        )

    def _settle(self, result: StepResult, receipt: Receipt) -> None:
        result.output = receipt.output
        result.duration_ms = receipt.duration_ms
        result.metadata.update(receipt.metadata)
        if receipt.ok:
            result.status = StepStatus.SUCCEEDED
        elif receipt.status == "skipped":
            result.status = StepStatus.SKIPPED
        else:
            self._fail(result, receipt.error or "failed", receipt.error_kind or "ExecutionError")

    @staticmethod
    def _fail(result: StepResult, error: str, kind: str) -> None:
        result.status = StepStatus.FAILED
        result.error = error
        result.error_kind = kind


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
