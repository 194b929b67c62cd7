"""
Shell command adapter — run ``pre_install`` and ``source.install`` lines.

Manifest commands are shell snippets, so they run through the
platform shell (``sh -c`` / ``cmd /C``) in the step's working directory.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.adapters.shell.runner import describe_failure, run_subprocess
from offsetup.core.models.action import Receipt

logger = logging.getLogger(__name__)


def shell_argv(command: str) -> list[str]:
    """Wrap a command line for the platform shell."""
    if os.name == "nt":
        return ["cmd", "/C", command]
    return ["sh", "-c", command]


class ShellCommandAdapter(Adapter):
    """Execute shell commands and capture output.

    Action params:
        command (str): The command line to execute.
        cwd (str): Working directory (default: current directory).
        timeout (int): Timeout in seconds (default: 1800).
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return shutil.which("cmd" if os.name == "nt" else "sh") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        command = context.params.get("command", "")
        if not command:
            return False, "Missing required param: 'command'"

        cwd = context.params.get("cwd")
        if cwd and not Path(cwd).is_dir():
            return False, f"Working directory does not exist: {cwd}"

        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        command = context.params["command"]
        cwd = context.params.get("cwd")
        timeout = context.params.get("timeout", 1800)

        logger.info("Running command: %s", command)
        result = run_subprocess(shell_argv(command), cwd=cwd, timeout=timeout)

        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=result["stdout"].strip(),
                duration_ms=result["elapsed_ms"],
                metadata={"command": command, "cwd": cwd},
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=describe_failure(result),
            error_kind="ExecutionError",
            duration_ms=result.get("elapsed_ms", 0),
            metadata={"command": command, "cwd": cwd, "returncode": result.get("returncode")},
        )
