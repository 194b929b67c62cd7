"""
Shared test fixtures and configuration.
"""

import hashlib
import threading
from pathlib import Path

import pytest

from offsetup.adapters.mock import MockAdapter
from offsetup.adapters.registry import AdapterRegistry
from offsetup.core.config.loader import load_manifest
from offsetup.core.models.runtime import RuntimeDescriptor
from offsetup.core.observability.redaction import clear_secrets

# Adapter names the engine dispatches to
ENGINE_ADAPTERS = (
    "shell", "apt", "brew", "choco", "docker", "artifact", "provision", "env", "ports",
)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def redis_manifest(fixtures_dir: Path):
    return load_manifest(fixtures_dir / "redis.yml")


@pytest.fixture
def simple_manifest(fixtures_dir: Path):
    return load_manifest(fixtures_dir / "simple.yml")


@pytest.fixture
def ubuntu_runtime() -> RuntimeDescriptor:
    return RuntimeDescriptor(os_name="ubuntu", os_version="16.04.2", arch="x86_64")


@pytest.fixture
def windows_runtime() -> RuntimeDescriptor:
    return RuntimeDescriptor(os_name="windows", os_version="10000", arch="amd64")


@pytest.fixture
def mocks() -> dict[str, MockAdapter]:
    return {name: MockAdapter(adapter_name=name) for name in ENGINE_ADAPTERS}


@pytest.fixture
def mock_registry(mocks: dict[str, MockAdapter]) -> AdapterRegistry:
    registry = AdapterRegistry()
    for mock in mocks.values():
        registry.register(mock)
    return registry


@pytest.fixture(autouse=True)
def _reset_secrets():
    yield
    clear_secrets()


class FakeTransport:
    """In-memory download transport that counts fetches."""

    def __init__(self, payloads: dict[str, bytes] | None = None):
        self.payloads = payloads or {}
        self.calls: list[str] = []
        self.started = threading.Event()
        self.release: threading.Event | None = None

    def fetch(self, uri: str, dest: Path, cancel: threading.Event | None = None) -> int:
        self.calls.append(uri)
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        data = self.payloads[uri]
        dest.write_bytes(data)
        return len(data)


def sha512_of(data: bytes) -> str:
    return hashlib.sha512(data).hexdigest()
