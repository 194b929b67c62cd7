"""
Manifest model — typed view of a resolved offsetup.yml.

The document is validated once, after ``$ref`` expansion, and is
immutable from then on. Platform branches accept the package-manager
shapes found in real manifests::

    apt: [curl, git]                  # plain list
    apt: {sharable: [curl, git]}      # grouped by sharing policy
    system: {apt: [curl], brew: [...]} # grouped under ``system``

All three normalise into ``PlatformSpec.managers`` (manager → packages),
preserving declaration order.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Package managers a platform branch may declare, as named in manifests.
KNOWN_MANAGERS: tuple[str, ...] = (
    "apt", "apt_get", "aptitude", "apk", "brew", "choco", "dnf", "emerge",
    "equo", "flatpak", "guix", "nix", "openpkg", "opkg", "pacman", "pisi",
    "pkg", "ppm", "slackpkg", "slapt_get", "snap", "swaret", "up2date",
    "urpmi", "yum", "zypper", "_0install",
)

# Keys of ``dependencies.platforms`` that hold shared fragments, not platforms
SHARED_PREFIX = "_"

_SHA512_RE = re.compile(r"^[0-9a-fA-F]{128}$")


def _as_str(value: Any) -> Any:
    """YAML turns ``5.0`` into a float; versions are always strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PackageRef(_Frozen):
    """One package identifier in a manager section."""

    name: str
    sharable: bool = False


class Artifact(_Frozen):
    """A downloadable file identified by URI and checksum."""

    uri: str
    sha512: str | None = None
    extract: bool = False
    sharable: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_shareable(cls, data: Any) -> Any:
        # Both spellings appear in the wild
        if isinstance(data, dict) and "shareable" in data:
            data = dict(data)
            data.setdefault("sharable", data.pop("shareable"))
        return data

    @field_validator("uri")
    @classmethod
    def _check_uri(cls, v: str) -> str:
        parsed = urlparse(v)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError(f"not a URI: {v!r}")
        return v

    @field_validator("sha512")
    @classmethod
    def _check_sha512(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not _SHA512_RE.match(v):
            raise ValueError("sha512 must be 128 hexadecimal characters")
        return v.lower()

    @property
    def filename(self) -> str:
        """Last path segment of the URI (``download`` if there is none)."""
        path = urlparse(self.uri).path.rstrip("/")
        return path.rsplit("/", 1)[-1] or "download"


def normalize_managers(raw: Any, *, where: str) -> dict[str, list[dict[str, Any]]]:
    """Normalise one manager section value into a list of package dicts."""
    if raw is None:
        return []
    if isinstance(raw, str):
        return [{"name": raw}]
    if isinstance(raw, list):
        return [_package(item, where=where) for item in raw]
    if isinstance(raw, dict):
        packages: list[dict[str, Any]] = []
        for group, items in raw.items():
            if group not in ("sharable", "shareable", "packages"):
                raise ValueError(f"{where}: unknown package group {group!r}")
            for item in items or []:
                pkg = _package(item, where=where)
                if group != "packages":
                    pkg["sharable"] = True
                packages.append(pkg)
        return packages
    raise ValueError(f"{where}: expected a list or mapping of packages")


def _package(item: Any, *, where: str) -> dict[str, Any]:
    if isinstance(item, dict):
        return dict(item)
    if isinstance(item, (str, int, float)):
        return {"name": str(item)}
    raise ValueError(f"{where}: invalid package entry {item!r}")


def _split_managers(data: dict[str, Any], *, where: str) -> dict[str, Any]:
    """Move manager keys (and a ``system`` group) into ``managers``."""
    out: dict[str, Any] = {}
    managers: dict[str, list] = {}
    for key, value in data.items():
        if key == "system":
            if not isinstance(value, dict):
                raise ValueError(f"{where}.system must be a mapping of package managers")
            for manager, packages in value.items():
                if manager not in KNOWN_MANAGERS:
                    raise ValueError(f"{where}.system: unknown package manager {manager!r}")
                managers.setdefault(manager, []).extend(
                    normalize_managers(packages, where=f"{where}.system.{manager}")
                )
        elif key in KNOWN_MANAGERS:
            managers.setdefault(key, []).extend(
                normalize_managers(value, where=f"{where}.{key}")
            )
        else:
            out[key] = value
    if managers:
        out["managers"] = managers
    return out


class SourceSpec(_Frozen):
    """Build-from-source instructions for a platform."""

    download: Artifact | None = None
    download_directory: str | None = None
    managers: dict[str, list[PackageRef]] = Field(default_factory=dict)
    install: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _split_managers(data, where="source")
            if isinstance(data.get("install"), str):
                data["install"] = [data["install"]]
        return data


class PlatformSpec(_Frozen):
    """One operating-system branch of the manifest."""

    versions: list[str] = Field(default_factory=list)
    arch: str | None = None
    download_directory: str | None = None
    install_prefix: str | None = None
    install_all: bool = False
    install_priority: list[str] = Field(default_factory=list)
    pre_install: list[str] = Field(default_factory=list)
    managers: dict[str, list[PackageRef]] = Field(default_factory=dict)
    source: SourceSpec | None = None
    download: list[Artifact] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _split_managers(data, where="platform")
        if isinstance(data.get("download"), dict):
            data["download"] = [data["download"]]
        if isinstance(data.get("versions"), list):
            data["versions"] = [_as_str(v) for v in data["versions"]]
        elif data.get("versions") is not None:
            data["versions"] = [_as_str(data["versions"])]
        if isinstance(data.get("pre_install"), str):
            data["pre_install"] = [data["pre_install"]]
        return data


class UserSpec(_Frozen):
    name: str
    password: str | None = None


class DatabaseSpec(_Frozen):
    name: str
    owner: str | None = None


class ApplicationSpec(_Frozen):
    """An application the node needs (a database, a cache, ...)."""

    pkg: str | None = None
    version: str | None = None
    env: str | None = None
    features: list[str] = Field(default_factory=list)
    skip_install: bool = False
    fail_silently: bool = False
    install_priority: list[str] = Field(default_factory=list)
    users: list[UserSpec] = Field(default_factory=list)
    databases: list[DatabaseSpec] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> Any:
        return _as_str(v)

    @field_validator("features")
    @classmethod
    def _unique_features(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class Dependencies(_Frozen):
    """Platform branches, shared fragments and applications."""

    platforms: dict[str, PlatformSpec] = Field(default_factory=dict)
    shared: dict[str, Any] = Field(default_factory=dict)
    applications: dict[str, ApplicationSpec] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split_shared(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        platforms = data.get("platforms") or {}
        if isinstance(platforms, dict):
            data["platforms"] = {
                k: v for k, v in platforms.items() if not k.startswith(SHARED_PREFIX)
            }
            data["shared"] = {
                k: v for k, v in platforms.items() if k.startswith(SHARED_PREFIX)
            }
        if data.get("applications") is None:
            data["applications"] = {}
        return data

    @model_validator(mode="after")
    def _windows_downloads_need_checksum(self) -> Dependencies:
        for key, spec in self.platforms.items():
            if key.lower() != "windows":
                continue
            for artifact in spec.download:
                if not artifact.sha512:
                    raise ValueError(
                        f"platforms.{key}.download: {artifact.uri} is missing sha512"
                    )
        return self


class Exposes(_Frozen):
    """Ports the node exposes, keyed by protocol (tcp, udp, ...)."""

    ports: dict[str, list[int]] = Field(default_factory=dict)

    @field_validator("ports")
    @classmethod
    def _check_ports(cls, v: dict[str, list[int]]) -> dict[str, list[int]]:
        for protocol, ports in v.items():
            for port in ports:
                if not 1 <= port <= 65535:
                    raise ValueError(f"{protocol} port out of range: {port}")
        return {protocol.lower(): ports for protocol, ports in v.items()}


class Manifest(_Frozen):
    """Root of an offsetup.yml document."""

    name: str
    version: str = "0.0.0"
    dependencies: Dependencies = Field(default_factory=Dependencies)
    exposes: Exposes = Field(default_factory=Exposes)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "version" in data:
                data["version"] = _as_str(data["version"])
            for key in ("dependencies", "exposes"):
                if data.get(key) is None:
                    data.pop(key, None)
        return data

    @property
    def platforms(self) -> dict[str, PlatformSpec]:
        return self.dependencies.platforms

    @property
    def applications(self) -> dict[str, ApplicationSpec]:
        return self.dependencies.applications

    def with_install_priority(self, priority: list[str]) -> Manifest:
        """Copy with every platform's ``install_priority`` replaced."""
        platforms = {
            name: spec.model_copy(update={"install_priority": list(priority)})
            for name, spec in self.platforms.items()
        }
        deps = self.dependencies.model_copy(update={"platforms": platforms})
        return self.model_copy(update={"dependencies": deps})
