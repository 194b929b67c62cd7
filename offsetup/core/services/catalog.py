"""
Well-known applications — conventions the install strategies rely on.

Maps an application name from the manifest to its container image,
default port, connection URI and distro package names. Applications
not listed here still install (image and package are the app name);
they just have no default connection value.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from offsetup.core.errors import InvalidVersionError
from offsetup.core.services.versions import Operator, parse_constraint


@dataclass(frozen=True)
class KnownApplication:
    name: str
    image: str
    port: int
    scheme: str
    path: str = ""
    container_env: dict[str, str] = field(default_factory=dict)
    packages: dict[str, str] = field(default_factory=dict)   # manager → package name
    client: str | None = None   # provisioning client (psql, mysql)

    def connection_uri(self, host: str = "localhost") -> str:
        return f"{self.scheme}://{host}:{self.port}{self.path}"


CATALOG: dict[str, KnownApplication] = {
    app.name: app
    for app in (
        KnownApplication(
            name="postgresql",
            image="postgres",
            port=5432,
            scheme="postgresql",
            path="/",
            container_env={"POSTGRES_HOST_AUTH_METHOD": "trust"},
            client="psql",
        ),
        KnownApplication(
            name="mysql",
            image="mysql",
            port=3306,
            scheme="mysql",
            path="/",
            container_env={"MYSQL_ALLOW_EMPTY_PASSWORD": "yes"},
            packages={"apt": "mysql-server"},
            client="mysql",
        ),
        KnownApplication(
            name="mariadb",
            image="mariadb",
            port=3306,
            scheme="mysql",
            path="/",
            container_env={"MARIADB_ALLOW_EMPTY_ROOT_PASSWORD": "yes"},
            packages={"apt": "mariadb-server"},
            client="mysql",
        ),
        KnownApplication(
            name="redis",
            image="redis",
            port=6379,
            scheme="redis",
            path="/0",
            packages={"apt": "redis-server"},
        ),
        KnownApplication(
            name="mongodb",
            image="mongo",
            port=27017,
            scheme="mongodb",
            packages={"brew": "mongodb-community"},
        ),
        KnownApplication(name="rabbitmq", image="rabbitmq", port=5672, scheme="amqp",
                         packages={"apt": "rabbitmq-server", "dnf": "rabbitmq-server"}),
        KnownApplication(name="memcached", image="memcached", port=11211, scheme="memcached"),
        KnownApplication(name="elasticsearch", image="elasticsearch", port=9200, scheme="http"),
    )
}


def lookup(name: str) -> KnownApplication | None:
    return CATALOG.get(name.lower())


def default_connection_uri(name: str, host: str = "localhost") -> str | None:
    """Conventional connection URI for a well-known application."""
    app = lookup(name)
    return app.connection_uri(host) if app else None


def image_for(name: str, version: str | None = None) -> str:
    """Container image reference; exact versions become the tag."""
    app = lookup(name)
    image = app.image if app else name.lower()
    return f"{image}:{image_tag(version)}"


def image_tag(version: str | None) -> str:
    if not version:
        return "latest"
    try:
        constraints = parse_constraint(version)
    except InvalidVersionError:
        return "latest"
    if len(constraints) == 1 and constraints[0].op is Operator.EXACT:
        return constraints[0].raw.lstrip("=").strip()
    return "latest"


def package_for(name: str, manager: str) -> str:
    """Distro package name of an application for ``manager``."""
    app = lookup(name)
    if app and manager in app.packages:
        return app.packages[manager]
    return name
