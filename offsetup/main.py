"""
offsetup — CLI entrypoint.

Usage:
    offsetup --help
    offsetup plan
    offsetup install --dry-run
    python -m offsetup.main check
"""

from __future__ import annotations

import json
import os
import signal
import sys
import threading
from pathlib import Path

import click

from offsetup import __version__
from offsetup.core.config.settings import EngineSettings
from offsetup.core.observability.logging_config import setup_logging

_STATUS_COLORS = {
    "ok": "green",
    "partial": "yellow",
    "failed": "red",
    "cancelled": "yellow",
}
_STEP_STYLE = {
    "succeeded": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
    "pending": ("·", "white"),
    "running": ("…", "white"),
}


@click.group()
@click.version_option(version=__version__, prog_name="offsetup")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to offsetup.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """offsetup — bootstrap this machine from a declarative manifest."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug or os.environ.get("OFFSETUP_DEBUG", "").lower() in ("1", "true", "yes", "on"):
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("OFFSETUP_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("OFFSETUP_LOG_FILE"),
        log_file_level=os.environ.get("OFFSETUP_LOG_FILE_LEVEL"),
        quiet_third_party=level != "DEBUG",
    )


def _settings(**overrides: object) -> EngineSettings:
    try:
        return EngineSettings.from_env(**overrides)
    except ValueError as e:
        click.secho(f"❌ Invalid settings: {e}", fg="red")
        sys.exit(1)


def _print_plan(plan, verbose: bool) -> None:
    for index, step in enumerate(plan.steps, start=1):
        owner = f" [{step.application}]" if step.application else ""
        click.echo(f"   {index:>3}. {step.label}{owner}")
        if verbose and len(step.depends_on) > 1:
            click.echo(f"        after: {', '.join(step.depends_on)}")


# ── plan ────────────────────────────────────────────────────────


@cli.command()
@click.option("--install-priority", default=None, help="Strategy order, e.g. 'docker,native'.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, install_priority: str | None, as_json: bool) -> None:
    """Show the ordered install plan for this machine."""
    from offsetup.core.use_cases.install import plan_install

    settings = _settings(install_priority=install_priority)
    result = plan_install(config_path=ctx.obj.get("config_path"), settings=settings)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    assert result.plan is not None and result.selection is not None
    click.secho(f"\n📋 {result.plan.manifest} on {result.plan.runtime}", fg="cyan", bold=True)
    click.echo(
        f"   Platform: {result.selection.name}"
        f" (constraint {result.selection.matched_constraint or 'any'})"
        f" | Steps: {result.plan.total_steps}"
    )
    click.echo()
    _print_plan(result.plan, ctx.obj.get("verbose", False))
    click.echo()


# ── install ─────────────────────────────────────────────────────


@cli.command()
@click.option("--dry-run", is_flag=True, help="Validate every step, change nothing.")
@click.option("--install-priority", default=None, help="Strategy order, e.g. 'docker,native'.")
@click.option("--concurrency", type=int, default=None, help="Parallel download limit.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def install(
    ctx: click.Context,
    dry_run: bool,
    install_priority: str | None,
    concurrency: int | None,
    as_json: bool,
) -> None:
    """Install everything the manifest declares for this machine.

    Examples:

        offsetup install

        offsetup install --dry-run

        offsetup install --install-priority native
    """
    from offsetup.core.use_cases.install import run_install

    settings = _settings(
        dry_run=dry_run or None, install_priority=install_priority, concurrency=concurrency
    )

    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def _on_interrupt(signum, frame) -> None:
        # First Ctrl-C cancels cooperatively; a second one aborts
        cancel.set()
        signal.signal(signal.SIGINT, previous)
        click.secho("\n⚠ Cancelling after the current step…", fg="yellow", err=True)

    in_main_thread = threading.current_thread() is threading.main_thread()
    if in_main_thread:
        signal.signal(signal.SIGINT, _on_interrupt)
    try:
        result = run_install(
            config_path=ctx.obj.get("config_path"),
            settings=settings,
            cancel=cancel,
        )
    finally:
        if in_main_thread:
            signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None
    verbose = ctx.obj.get("verbose", False)

    mode_label = "[dry-run] " if report.dry_run else ""
    click.secho(f"\n⚡ {mode_label}{report.manifest} on {report.runtime}", fg="cyan", bold=True)
    click.echo(f"   Platform: {report.platform} | Steps: {report.total}")
    click.echo()

    for step in report.results:
        marker, color = _STEP_STYLE[step.status.value]
        timing = f" ({step.duration_ms}ms)" if step.duration_ms else ""
        click.secho(f"   {marker} {step.label}", fg=color, nl=False)
        notes = []
        if step.strategy:
            notes.append(f"via {step.strategy}")
        if step.silenced:
            notes.append("fail_silently")
        if step.cancelled:
            notes.append("cancelled")
        click.echo(f"{timing}{' — ' + ', '.join(notes) if notes else ''}")

        for attempt in step.attempts:
            if attempt.status != "ok" and (verbose or step.status.value != "succeeded"):
                click.echo(f"     │ {attempt.strategy}: {attempt.status} ({attempt.error})")
            elif attempt.status != "ok":
                click.echo(f"     │ {attempt.strategy}: {attempt.status}")
        if step.error and not step.attempts:
            for line in step.error.split("\n")[:5]:
                click.echo(f"     │ {line}")
        if verbose and step.output and step.status.value == "succeeded":
            for line in step.output.split("\n")[:10]:
                click.echo(f"     │ {line}")

    click.echo()
    click.secho(
        f"   Result: {report.succeeded}/{report.total} succeeded"
        f", {report.failed} failed, {report.skipped} skipped"
        + (f", {report.pending} not attempted" if report.pending else ""),
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    if result.report_path and not ctx.obj.get("quiet"):
        click.echo(f"   Report: {result.report_path}")
    click.echo()

    if report.exit_code:
        sys.exit(report.exit_code)


# ── check ───────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Validate offsetup.yml and report issues."""
    from offsetup.core.use_cases.check import check_manifest

    result = check_manifest(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.manifest is not None
        click.secho(f"✅ {result.manifest.name} — manifest valid", fg="green", bold=True)
        click.echo(
            f"   Platforms: {', '.join(sorted(result.manifest.platforms)) or 'none'}"
            f" | Applications: {len(result.manifest.applications)}"
        )
    else:
        click.secho("❌ Manifest invalid", fg="red", bold=True)

    for error in result.errors:
        click.secho(f"   ✗ {error}", fg="red")
    for warning in result.warnings:
        click.secho(f"   ⚠ {warning}", fg="yellow")

    if not result.valid:
        sys.exit(1)


# ── detect ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def detect(as_json: bool) -> None:
    """Show the runtime this machine is detected as."""
    from offsetup.core.services.detection import detect_runtime

    runtime = detect_runtime()
    if as_json:
        click.echo(json.dumps(runtime.model_dump(), indent=2))
        return

    click.secho(f"🖥  {runtime}", fg="cyan", bold=True)
    click.echo(f"   os_name: {runtime.os_name}")
    click.echo(f"   os_version: {runtime.os_version}")
    click.echo(f"   arch: {runtime.arch}")


# ── new ─────────────────────────────────────────────────────────


@cli.command()
@click.option("--name", default=None, help="Manifest name (default: directory name).")
@click.option("--force", is_flag=True, help="Overwrite an existing offsetup.yml.")
@click.argument("directory", type=click.Path(file_okay=False), default=".")
def new(name: str | None, force: bool, directory: str) -> None:
    """Write a starter offsetup.yml for this machine."""
    from offsetup.core.use_cases.scaffold import scaffold_manifest

    result = scaffold_manifest(Path(directory), name=name, force=force)
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)
    click.secho(f"✅ Created {result.path}", fg="green")


if __name__ == "__main__":
    cli()
