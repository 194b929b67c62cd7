"""
Application provisioner — post-install steps for applications.

For each application it derives, in order:
    UserProvision* → DatabaseProvision* → EnvBind

A database owned by a user declared elsewhere in the manifest is held
back until that user's step has been emitted, and depends on it
explicitly. Owners not declared anywhere are assumed to exist already.

Values are not resolved here: ``$VAR`` credentials and env-binding
values are looked up by the engine at execution time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from offsetup.core.models.manifest import ApplicationSpec, DatabaseSpec, Manifest
from offsetup.core.models.plan import (
    PHASE_APPLICATIONS,
    DatabaseProvision,
    EnvBind,
    Step,
    UserProvision,
)

logger = logging.getLogger(__name__)

# add(step_cls, slug, **fields) -> Step, provided by the planner's builder
AddStep = Callable[..., Step]


@dataclass
class _Pending:
    application: str
    spec: DatabaseSpec
    fail_silently: bool


@dataclass
class ApplicationProvisioner:
    """Stateful across applications so cross-application owners order correctly."""

    declared_users: set[str] = field(default_factory=set)
    _user_steps: dict[str, str] = field(default_factory=dict)
    _deferred: list[_Pending] = field(default_factory=list)

    @classmethod
    def for_manifest(cls, manifest: Manifest) -> ApplicationProvisioner:
        users = {
            user.name
            for app in manifest.applications.values()
            for user in app.users
        }
        return cls(declared_users=users)

    def add_steps(
        self,
        add: AddStep,
        name: str,
        app: ApplicationSpec,
        install_step: str | None,
    ) -> None:
        """Emit the provisioning steps of one application through ``add``."""
        for user in app.users:
            step = add(
                UserProvision,
                f"{name}.user.{user.name}",
                phase=PHASE_APPLICATIONS,
                application=name,
                fail_silently=app.fail_silently,
                name=user.name,
                credential=user.password,
            )
            self._user_steps[user.name] = step.id
            self._flush_deferred(add, user.name)

        for db in app.databases:
            owner = db.owner
            if owner and owner in self.declared_users and owner not in self._user_steps:
                logger.debug("Deferring database %s until user %s is planned", db.name, owner)
                self._deferred.append(_Pending(name, db, app.fail_silently))
                continue
            self._add_database(add, name, db, app.fail_silently)

        if app.env:
            add(
                EnvBind,
                f"{name}.env.{app.env}",
                phase=PHASE_APPLICATIONS,
                application=name,
                fail_silently=app.fail_silently,
                name=app.env,
                value_source="install_result" if install_step else "configuration",
                install_step=install_step,
            )

    def _add_database(
        self, add: AddStep, application: str, db: DatabaseSpec, fail_silently: bool
    ) -> None:
        extra = []
        if db.owner and db.owner in self._user_steps:
            extra.append(self._user_steps[db.owner])
        add(
            DatabaseProvision,
            f"{application}.database.{db.name}",
            phase=PHASE_APPLICATIONS,
            application=application,
            fail_silently=fail_silently,
            extra_depends=extra,
            name=db.name,
            owner=db.owner,
        )

    def _flush_deferred(self, add: AddStep, user: str) -> None:
        ready = [p for p in self._deferred if p.spec.owner == user]
        self._deferred = [p for p in self._deferred if p.spec.owner != user]
        for pending in ready:
            self._add_database(add, pending.application, pending.spec, pending.fail_silently)
