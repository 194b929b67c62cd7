"""
Subprocess runner — the single place ``subprocess.run`` is called.

Every adapter that shells out (package managers, docker, provisioning
clients, manifest commands) goes through ``run_subprocess`` so that
privilege escalation, timeouts and output capture behave the same
everywhere.

Privilege rules:
    - Already root, or on a platform without uids → run as-is
    - ``needs_sudo`` and sudo enabled → ``sudo -n`` (never prompts)
    - ``needs_sudo`` and sudo disabled → run as-is, let it fail loudly

Secrets go through ``input_text`` (stdin), never through arguments.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# Bytes of stdout/stderr kept in results
OUTPUT_TAIL = 2000


def is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is None or geteuid() == 0


def sudo_prefix(needs_sudo: bool, use_sudo: bool) -> list[str]:
    """Prefix for a privileged command, empty when none applies."""
    if not needs_sudo or not use_sudo or is_root():
        return []
    if shutil.which("sudo") is None:
        return []
    return ["sudo", "-n"]


def run_subprocess(
    cmd: list[str],
    *,
    needs_sudo: bool = False,
    use_sudo: bool = True,
    timeout: int = 1800,
    cwd: str | None = None,
    input_text: str | None = None,
    env_overrides: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Run a command and capture its outcome.

    Args:
        cmd: Command list for ``subprocess.run()``.
        needs_sudo: Whether the command requires root.
        use_sudo: Whether escalation through sudo is allowed.
        timeout: Seconds before ``TimeoutExpired``.
        cwd: Working directory for the command.
        input_text: Text piped to stdin (SQL, credentials).
        env_overrides: Extra env vars for the child process.

    Returns:
        ``{"ok": True, "stdout": "...", "elapsed_ms": N}`` on success,
        ``{"ok": False, "error": "...", ...}`` on failure.
    """
    cmd = sudo_prefix(needs_sudo, use_sudo) + list(cmd)

    env = None
    if env_overrides:
        env = os.environ.copy()
        env.update(env_overrides)

    logger.debug("Running: %s (cwd=%s)", " ".join(cmd), cwd)
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return {"ok": False, "error": f"Command timed out ({timeout}s)"}
    except FileNotFoundError:
        return {"ok": False, "missing": True, "error": f"Command not found: {cmd[0]}"}
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd)
        return {"ok": False, "error": str(e)}

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout[-OUTPUT_TAIL:] if result.stdout else ""
    stderr = result.stderr[-OUTPUT_TAIL:] if result.stderr else ""

    if result.returncode == 0:
        return {"ok": True, "stdout": stdout, "stderr": stderr, "elapsed_ms": elapsed_ms}

    if cmd[:2] == ["sudo", "-n"] and "password is required" in stderr.lower():
        return {
            "ok": False,
            "needs_sudo": True,
            "error": "sudo requires a password; run as root or configure passwordless sudo",
            "elapsed_ms": elapsed_ms,
        }

    return {
        "ok": False,
        "error": f"Command failed (exit {result.returncode})",
        "returncode": result.returncode,
        "stderr": stderr,
        "stdout": stdout,
        "elapsed_ms": elapsed_ms,
    }


def describe_failure(result: dict[str, Any]) -> str:
    """One-line error text for a failed ``run_subprocess`` result."""
    detail = (result.get("stderr") or "").strip().splitlines()
    if detail:
        return f"{result['error']}: {detail[-1]}"
    return result["error"]
