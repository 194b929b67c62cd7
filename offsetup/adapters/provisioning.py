"""
Provisioning adapters — what happens after an application is installed.

    ProvisioningAdapter  users and databases, through the app's SQL client
    EnvBindAdapter       bind an env var to the app's connection value
    PortAdapter          record an exposed port, probe for a listener

SQL goes to the client on stdin, so passwords never appear in a
command line. The client runs inside the container when the
application was installed with docker, on the host otherwise.
"""

from __future__ import annotations

import logging
import shutil
import socket

from offsetup.adapters.base import Adapter, ExecutionContext
from offsetup.adapters.shell.runner import describe_failure, is_root, run_subprocess
from offsetup.core.environ import EnvironmentAccessor
from offsetup.core.models.action import Receipt
from offsetup.core.observability.redaction import redact_uri
from offsetup.core.services import catalog

logger = logging.getLogger(__name__)


# ── SQL ─────────────────────────────────────────────────────────


def sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def mysql_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def mysql_identifier(value: str) -> str:
    return "`" + value.replace("`", "``") + "`"


def postgres_user_sql(name: str, password: str | None) -> str:
    """Idempotent role creation, for ``psql`` (uses ``\\gexec``)."""
    if password is None:
        create = f"SELECT format('CREATE ROLE %I LOGIN', {sql_literal(name)})"
    else:
        create = (
            f"SELECT format('CREATE ROLE %I LOGIN PASSWORD %L', "
            f"{sql_literal(name)}, {sql_literal(password)})"
        )
    return (
        f"{create} WHERE NOT EXISTS "
        f"(SELECT FROM pg_roles WHERE rolname = {sql_literal(name)})\\gexec\n"
    )


def postgres_database_sql(name: str, owner: str | None) -> str:
    """Idempotent database creation, for ``psql`` (uses ``\\gexec``)."""
    if owner:
        create = (
            f"SELECT format('CREATE DATABASE %I OWNER %I', "
            f"{sql_literal(name)}, {sql_literal(owner)})"
        )
    else:
        create = f"SELECT format('CREATE DATABASE %I', {sql_literal(name)})"
    return (
        f"{create} WHERE NOT EXISTS "
        f"(SELECT FROM pg_database WHERE datname = {sql_literal(name)})\\gexec\n"
    )


def mysql_user_sql(name: str, password: str | None) -> str:
    sql = f"CREATE USER IF NOT EXISTS {mysql_literal(name)}@'%'"
    if password is not None:
        sql += f" IDENTIFIED BY {mysql_literal(password)}"
    return sql + ";\n"


def mysql_database_sql(name: str, owner: str | None) -> str:
    sql = f"CREATE DATABASE IF NOT EXISTS {mysql_identifier(name)};\n"
    if owner:
        sql += f"GRANT ALL PRIVILEGES ON {mysql_identifier(name)}.* TO {mysql_literal(owner)}@'%';\n"
    return sql


_SQL_BUILDERS = {
    "psql": {"user": postgres_user_sql, "database": postgres_database_sql},
    "mysql": {"user": mysql_user_sql, "database": mysql_database_sql},
}


def client_command(client: str, install: dict) -> list[str]:
    """Command line that reads SQL from stdin as the admin user."""
    container = install.get("container") if install.get("strategy") == "docker" else None
    if client == "psql":
        base = ["psql", "-v", "ON_ERROR_STOP=1", "-q", "-U", "postgres"]
        if container:
            return ["docker", "exec", "-i", container, *base]
        # Native clusters authenticate the postgres OS user by peer
        if shutil.which("sudo") is not None:
            return ["sudo", "-n", "-u", "postgres", *base[:-2]]
        return base
    base = ["mysql", "-uroot"]
    if container:
        return ["docker", "exec", "-i", container, *base]
    if not is_root() and shutil.which("sudo") is not None:
        return ["sudo", "-n", *base]
    return base


class ProvisioningAdapter(Adapter):
    """Create application users and databases.

    Action params:
        operation (str): 'user' or 'database'.
        application (str): Owning application (picks the SQL client).
        name (str): User or database name.
        password (str | None): Resolved credential, for users.
        owner (str | None): Owning user, for databases.
        install (dict): Metadata of the application's install receipt.
    """

    @property
    def name(self) -> str:
        return "provision"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.params.get("operation")
        if operation not in ("user", "database"):
            return False, f"Unknown operation '{operation}'. Valid: user, database"
        if not context.params.get("name"):
            return False, "Missing required param: 'name'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        operation = params["operation"]
        application = params.get("application") or ""
        known = catalog.lookup(application)

        if known is None or known.client not in _SQL_BUILDERS:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"No {operation} provisioning support for '{application}'",
                error_kind="ProvisioningError",
            )

        builder = _SQL_BUILDERS[known.client][operation]
        second = params.get("password") if operation == "user" else params.get("owner")
        sql = builder(params["name"], second)
        cmd = client_command(known.client, params.get("install") or {})

        logger.info("Provisioning %s %s on %s", operation, params["name"], application)
        result = run_subprocess(cmd, input_text=sql, timeout=120)
        metadata = {"application": application, "operation": operation, "name": params["name"]}
        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=f"{operation} {params['name']} ready",
                duration_ms=result["elapsed_ms"],
                metadata=metadata,
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=f"{operation} {params['name']}: {describe_failure(result)}",
            error_kind="ProvisioningError",
            duration_ms=result.get("elapsed_ms", 0),
            metadata=metadata,
        )


class EnvBindAdapter(Adapter):
    """Bind an environment variable for the running system.

    Action params:
        name (str): Variable name.
        value (str): Value to bind.
    """

    def __init__(self, environ: EnvironmentAccessor):
        self._environ = environ

    @property
    def name(self) -> str:
        return "env"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("name"):
            return False, "Missing required param: 'name'"
        if context.params.get("value") is None:
            return False, "Missing required param: 'value'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        name = context.params["name"]
        value = str(context.params["value"])
        previous = self._environ.get(name)
        self._environ.set(name, value)
        shown = redact_uri(value)
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"{name}={shown}",
            metadata={"name": name, "value": shown, "changed": previous != value},
        )


class PortAdapter(Adapter):
    """Record an exposed port and probe for a local listener.

    Action params:
        protocol (str): 'tcp', 'udp', ...
        port (int): Port number.
    """

    def __init__(self, host: str = "127.0.0.1", timeout: float = 0.5):
        self._host = host
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "ports"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        port = context.params.get("port")
        if not isinstance(port, int) or not 1 <= port <= 65535:
            return False, f"Invalid port: {port!r}"
        return True, ""

    def listening(self, protocol: str, port: int) -> bool | None:
        """True/False for tcp; None where a probe means nothing (udp)."""
        if protocol != "tcp":
            return None
        try:
            with socket.create_connection((self._host, port), timeout=self._timeout):
                return True
        except OSError:
            return False

    def execute(self, context: ExecutionContext) -> Receipt:
        protocol = context.params.get("protocol", "tcp")
        port = context.params["port"]
        state = self.listening(protocol, port)
        note = {True: "listening", False: "not listening yet", None: "not probed"}[state]
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"{protocol}/{port} exposed ({note})",
            metadata={"protocol": protocol, "port": port, "listening": state},
        )
