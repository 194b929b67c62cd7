"""
Package manager adapter — install one package with a system manager.

One adapter instance per manager name used in manifests (``apt``,
``brew``, ``choco``, ...). The registry holds one of each; a manager
whose binary is missing on this machine reports itself unavailable.

Installs are idempotent: a package the manager already reports as
installed is skipped without running the install command.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.adapters.shell.runner import describe_failure, run_subprocess
from offsetup.core.models.action import Receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManagerCommands:
    """How to drive one package manager."""

    binary: str
    install: tuple[str, ...]
    probe: tuple[str, ...] | None = None   # exits 0 when the package is installed
    probe_stdout: str | None = None        # required substring of probe stdout
    needs_root: bool = True
    env: dict[str, str] = field(default_factory=dict)


_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
_DPKG_PROBE = ("dpkg-query", "-W", "-f=${Status}")
_RPM_PROBE = ("rpm", "-q")

MANAGERS: dict[str, ManagerCommands] = {
    "apt": ManagerCommands("apt-get", ("apt-get", "install", "-y"), _DPKG_PROBE,
                           "install ok installed", env=_APT_ENV),
    "apt_get": ManagerCommands("apt-get", ("apt-get", "install", "-y"), _DPKG_PROBE,
                               "install ok installed", env=_APT_ENV),
    "aptitude": ManagerCommands("aptitude", ("aptitude", "install", "-y"), _DPKG_PROBE,
                                "install ok installed", env=_APT_ENV),
    "dnf": ManagerCommands("dnf", ("dnf", "install", "-y"), _RPM_PROBE),
    "yum": ManagerCommands("yum", ("yum", "install", "-y"), _RPM_PROBE),
    "zypper": ManagerCommands("zypper", ("zypper", "--non-interactive", "install"), _RPM_PROBE),
    "urpmi": ManagerCommands("urpmi", ("urpmi", "--auto"), _RPM_PROBE),
    "apk": ManagerCommands("apk", ("apk", "add"), ("apk", "info", "-e")),
    "pacman": ManagerCommands("pacman", ("pacman", "-S", "--noconfirm", "--needed"),
                              ("pacman", "-Q")),
    "emerge": ManagerCommands("emerge", ("emerge", "--noreplace")),
    "pkg": ManagerCommands("pkg", ("pkg", "install", "-y"), ("pkg", "info", "-e")),
    "snap": ManagerCommands("snap", ("snap", "install"), ("snap", "list")),
    "flatpak": ManagerCommands("flatpak", ("flatpak", "install", "-y"), ("flatpak", "info")),
    "nix": ManagerCommands("nix-env", ("nix-env", "-i"), needs_root=False),
    "brew": ManagerCommands("brew", ("brew", "install"), ("brew", "ls", "--versions"),
                            needs_root=False),
    "choco": ManagerCommands("choco", ("choco", "install", "-y"), needs_root=False),
}


def install_command(manager: str, package: str) -> list[str]:
    """Install command line for ``package`` (KeyError for unknown managers)."""
    return [*MANAGERS[manager].install, package]


class PackageManagerAdapter(Adapter):
    """Install packages through one system package manager.

    Action params:
        package (str): Package name as the manager knows it.
        sharable (bool): Declared sharing policy (recorded only).
    """

    def __init__(self, manager: str, use_sudo: bool = True, timeout: int = 1800):
        self._manager = manager
        self._commands = MANAGERS.get(manager)
        self._use_sudo = use_sudo
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self._manager

    def is_available(self) -> bool:
        return self._commands is not None and shutil.which(self._commands.binary) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("package"):
            return False, "Missing required param: 'package'"
        return True, ""

    def is_installed(self, package: str) -> bool:
        """Ask the manager whether ``package`` is installed. False when unsure."""
        commands = self._commands
        if commands is None or commands.probe is None:
            return False
        if shutil.which(commands.probe[0]) is None:
            return False
        result = run_subprocess([*commands.probe, package], timeout=30)
        if not result["ok"]:
            return False
        if commands.probe_stdout is not None:
            return commands.probe_stdout in result["stdout"]
        return True

    def execute(self, context: ExecutionContext) -> Receipt:
        package = context.params["package"]
        metadata = {"manager": self._manager, "package": package}

        if self.is_installed(package):
            logger.info("%s: %s already installed", self._manager, package)
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=f"{package} already installed",
                metadata={**metadata, "already_installed": True},
            )

        commands = self._commands
        assert commands is not None
        logger.info("%s: installing %s", self._manager, package)
        result = run_subprocess(
            install_command(self._manager, package),
            needs_sudo=commands.needs_root,
            use_sudo=self._use_sudo,
            timeout=self._timeout,
            env_overrides=commands.env or None,
        )
        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=result["stdout"].strip(),
                duration_ms=result["elapsed_ms"],
                metadata={**metadata, "already_installed": False},
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"{self._manager} install {package}: {describe_failure(result)}",
            error_kind="PackageManagerError",
            duration_ms=result.get("elapsed_ms", 0),
            metadata=metadata,
        )
