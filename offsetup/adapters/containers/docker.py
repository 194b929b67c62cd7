"""
Docker adapter — the container install strategy.

Installs an application by pulling its image and running it as a
detached container named ``offsetup-<app>``. Uses the docker CLI —
never the Docker API directly.

Re-running is safe: an existing ``offsetup-<app>`` container is
started instead of created again.
"""

from __future__ import annotations

import logging
import shutil

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.adapters.shell.runner import describe_failure, run_subprocess
from offsetup.core.models.action import Receipt
from offsetup.core.services import catalog

logger = logging.getLogger(__name__)

CONTAINER_PREFIX = "offsetup-"


def container_name(application: str) -> str:
    return f"{CONTAINER_PREFIX}{application.lower()}"


class DockerAdapter(Adapter):
    """Container-based application installs.

    Action params:
        operation (str): 'install', the default and only operation.
        name (str): Application name.
        version (str): Version constraint; exact versions pick the image tag.
        timeout (int): Timeout in seconds (default: 900).
    """

    def __init__(self) -> None:
        self._available: bool | None = None

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        # Binary present and daemon reachable; probed once per process
        if self._available is None:
            if shutil.which("docker") is None:
                self._available = False
            else:
                result = run_subprocess(
                    ["docker", "info", "--format", "{{.ServerVersion}}"], timeout=15
                )
                self._available = result["ok"]
                if not result["ok"]:
                    logger.info("docker found but daemon unreachable: %s", result["error"])
        return self._available

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.params.get("operation", "install")
        if operation != "install":
            return False, f"Unknown operation '{operation}'. Valid: install"
        if not context.params.get("name"):
            return False, "Missing required param: 'name'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        return self._install(context)

    # ── Operations ──────────────────────────────────────────────

    def _install(self, ctx: ExecutionContext) -> Receipt:
        app = ctx.params["name"]
        timeout = ctx.params.get("timeout", 900)
        image = catalog.image_for(app, ctx.params.get("version"))
        container = container_name(app)
        known = catalog.lookup(app)
        metadata = {
            "strategy": "docker",
            "image": image,
            "container": container,
            "connection_uri": known.connection_uri() if known else None,
        }

        existing = run_subprocess(
            ["docker", "ps", "-a", "--filter", f"name=^{container}$", "--format", "{{.Names}}"],
            timeout=30,
        )
        if existing["ok"] and existing["stdout"].strip() == container:
            logger.info("Container %s exists; starting it", container)
            result = run_subprocess(["docker", "start", container], timeout=timeout)
            return self._receipt(ctx, result, f"started existing container {container}", metadata)

        logger.info("Pulling %s", image)
        pulled = run_subprocess(["docker", "pull", image], timeout=timeout)
        if not pulled["ok"]:
            return self._receipt(ctx, pulled, "", metadata)

        args = ["docker", "run", "-d", "--name", container, "--restart", "unless-stopped"]
        if known is not None:
            args += ["-p", f"{known.port}:{known.port}"]
            for key, value in known.container_env.items():
                args += ["-e", f"{key}={value}"]
        args.append(image)
        result = run_subprocess(args, timeout=timeout)
        return self._receipt(ctx, result, f"running {image} as {container}", metadata)

    def _receipt(self, ctx: ExecutionContext, result: dict, summary: str, metadata: dict) -> Receipt:
        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=summary or result["stdout"].strip(),
                duration_ms=result.get("elapsed_ms", 0),
                metadata=metadata,
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=f"docker: {describe_failure(result)}",
            error_kind="ExecutionError",
            duration_ms=result.get("elapsed_ms", 0),
            metadata=metadata,
        )
