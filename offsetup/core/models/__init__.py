"""
Domain models — Pydantic types for manifests, plans and execution.

Re-exported here for convenient access:

    from offsetup.core.models import Manifest, InstallPlan, Receipt, StepResult
"""

from offsetup.core.models.action import Action, Receipt
from offsetup.core.models.manifest import (
    ApplicationSpec,
    Artifact,
    DatabaseSpec,
    Dependencies,
    Exposes,
    Manifest,
    PackageRef,
    PlatformSpec,
    SourceSpec,
    UserSpec,
)
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
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.models.state import StepResult, StepStatus, StrategyAttempt

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # manifest.py
    "ApplicationSpec",
    "Artifact",
    "DatabaseSpec",
    "Dependencies",
    "Exposes",
    "Manifest",
    "PackageRef",
    "PlatformSpec",
    "SourceSpec",
    "UserSpec",
    # plan.py
    "ApplicationInstall",
    "CommandStep",
    "DatabaseProvision",
    "DownloadExtract",
    "EnvBind",
    "InstallPlan",
    "PackageManagerInstall",
    "PortExpose",
    "Step",
    "UserProvision",
    # runtime.py
    "RuntimeDescriptor",
    # state.py
    "StepResult",
    "StepStatus",
    "StrategyAttempt",
]
