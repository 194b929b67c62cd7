"""
Runtime detection — build the RuntimeDescriptor for this machine.

Read-only probes: ``platform`` and ``/etc/os-release``. The OS names
produced here are the platform keys manifests use (``ubuntu``, ``mac``,
``windows``, ...).
"""

from __future__ import annotations

import logging
import platform
import re

from offsetup.core.models.runtime import RuntimeDescriptor

logger = logging.getLogger(__name__)

# os-release ID → manifest platform key
_LINUX_IDS: dict[str, str] = {
    "ubuntu": "ubuntu",
    "debian": "debian",
    "centos": "centos",
    "rhel": "redhat",
    "redhat": "redhat",
    "fedora": "fedora",
    "arch": "arch",
    "archlinux": "arch",
    "manjaro": "manjaro",
    "alpine": "alpine",
    "opensuse-leap": "opensuse",
    "opensuse-tumbleweed": "opensuse",
}

_ARCH_ALIASES: dict[str, str] = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "armv8": "aarch64",
    "i686": "x86",
    "i386": "x86",
}


def normalize_arch(machine: str) -> str:
    """``AMD64`` → ``x86_64``, ``arm64`` → ``aarch64``."""
    machine = machine.strip().lower()
    return _ARCH_ALIASES.get(machine, machine)


def _read_os_release() -> dict[str, str]:
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


def _linux_descriptor() -> tuple[str, str]:
    info = _read_os_release()
    os_id = info.get("ID", "").lower()
    name = _LINUX_IDS.get(os_id)
    if name is None:
        # Derivatives: ID_LIKE="ubuntu debian"
        for like in info.get("ID_LIKE", "").lower().split():
            if like in _LINUX_IDS:
                logger.debug("Treating %s as %s (ID_LIKE)", os_id, like)
                name = _LINUX_IDS[like]
                break
    version = info.get("VERSION_ID", "") or platform.release()
    return name or os_id or "linux", version


def _windows_version() -> str:
    """Windows build number (``10.0.19041`` → ``19041``)."""
    version = platform.version()
    match = re.search(r"(\d+)\.(\d+)\.(\d+)", version)
    if match:
        return match.group(3)
    return version


def detect_runtime() -> RuntimeDescriptor:
    """Detect the current OS name, version and architecture."""
    system = platform.system()
    arch = normalize_arch(platform.machine() or "unknown")

    if system == "Linux":
        os_name, os_version = _linux_descriptor()
    elif system == "Darwin":
        os_name, os_version = "mac", platform.mac_ver()[0]
    elif system == "Windows":
        os_name, os_version = "windows", _windows_version()
    else:
        os_name, os_version = system.lower(), platform.release()

    runtime = RuntimeDescriptor(os_name=os_name, os_version=os_version, arch=arch)
    logger.info("Detected runtime: %s", runtime)
    return runtime
