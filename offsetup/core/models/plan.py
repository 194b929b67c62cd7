"""
Install plan — a closed set of step kinds.

The planner emits steps in execution order; ``depends_on`` makes the
ordering explicit so the engine can run independent downloads
concurrently while everything else stays sequential.

Phases follow the planning rules:
    1 pre_install · 2 package managers · 3 source · 4 downloads
    5 applications · 6 exposed ports
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from offsetup.core.models.runtime import RuntimeDescriptor

PHASE_PRE_INSTALL = 1
PHASE_PACKAGES = 2
PHASE_SOURCE = 3
PHASE_DOWNLOADS = 4
PHASE_APPLICATIONS = 5
PHASE_PORTS = 6


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    phase: int
    depends_on: list[str] = Field(default_factory=list)
    application: str | None = None   # owning application, None for platform steps
    fail_silently: bool = False

    @property
    def label(self) -> str:
        return self.id


class CommandStep(_StepBase):
    """A shell command from ``pre_install`` or ``source.install``."""

    kind: Literal["command"] = "command"
    command: str
    stage: Literal["pre_install", "source_install"] = "pre_install"
    cwd: str | None = None

    @property
    def label(self) -> str:
        return f"$ {self.command}"


class PackageManagerInstall(_StepBase):
    """Install one package with a system package manager."""

    kind: Literal["package"] = "package"
    manager: str
    package: str
    sharable: bool = False
    stage: Literal["system", "source_build"] = "system"

    @property
    def label(self) -> str:
        return f"{self.manager} install {self.package}"


class DownloadExtract(_StepBase):
    """Download, verify and optionally unpack one artifact."""

    kind: Literal["download"] = "download"
    uri: str
    sha512: str | None = None
    extract: bool = False
    target_dir: str
    filename: str
    sharable: bool = False
    install_prefix: str | None = None
    stage: Literal["source", "download"] = "download"

    @property
    def label(self) -> str:
        extra = " + extract" if self.extract else ""
        return f"download {self.uri}{extra}"


class ApplicationInstall(_StepBase):
    """Install an application, trying ``strategies`` in order."""

    kind: Literal["application"] = "application"
    name: str
    pkg: str | None = None
    version: str | None = None
    features: list[str] = Field(default_factory=list)
    strategies: list[str] = Field(default_factory=list)
    native_manager: str | None = None
    skip_install: bool = False

    @property
    def label(self) -> str:
        chain = " → ".join(self.strategies) or "none"
        return f"install {self.name} [{chain}]"


class EnvBind(_StepBase):
    """Bind an env var to the application's connection value."""

    kind: Literal["env_bind"] = "env_bind"
    name: str
    value_source: Literal["install_result", "configuration"] = "install_result"
    install_step: str | None = None   # step whose receipt may carry the value

    @property
    def label(self) -> str:
        return f"bind ${self.name}"


class UserProvision(_StepBase):
    """Create an application-level user (e.g. a database role)."""

    kind: Literal["user"] = "user"
    name: str
    credential: str | None = None   # literal secret or ``$VAR`` reference

    @property
    def label(self) -> str:
        return f"user {self.name}"


class DatabaseProvision(_StepBase):
    """Create a database, owned by ``owner`` when given."""

    kind: Literal["database"] = "database"
    name: str
    owner: str | None = None

    @property
    def label(self) -> str:
        owner = f" (owner {self.owner})" if self.owner else ""
        return f"database {self.name}{owner}"


class PortExpose(_StepBase):
    """Declare an exposed port."""

    kind: Literal["port"] = "port"
    protocol: str = "tcp"
    port: int

    @property
    def label(self) -> str:
        return f"expose {self.protocol}/{self.port}"


Step = Annotated[
    Union[
        CommandStep,
        PackageManagerInstall,
        DownloadExtract,
        ApplicationInstall,
        EnvBind,
        UserProvision,
        DatabaseProvision,
        PortExpose,
    ],
    Field(discriminator="kind"),
]

# Steps that take the system package-manager lock while running
LOCKED_KINDS = frozenset({"package", "application"})
INSTALL_KINDS = frozenset({"command", "package", "download", "application"})


class InstallPlan(BaseModel):
    """Ordered steps for one run. Built fresh every run, never persisted."""

    manifest: str
    platform: str
    runtime: RuntimeDescriptor
    steps: list[Step] = Field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def get(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def by_kind(self, kind: str) -> list[Step]:
        return [s for s in self.steps if s.kind == kind]

    def to_dict(self) -> dict:
        return {
            "manifest": self.manifest,
            "platform": self.platform,
            "runtime": self.runtime.model_dump(),
            "total_steps": self.total_steps,
            "steps": [
                {**s.model_dump(mode="json"), "label": s.label} for s in self.steps
            ],
        }
