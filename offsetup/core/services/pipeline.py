"""
Artifact pipeline — download, verify, extract.

One ``DownloadExtract`` step at a time:

    exists + checksum ok?  → reuse (re-verify only, no download)
    otherwise              → fetch to ``<name>.part`` → verify → rename
    extract flag           → unpack into the target directory
    install prefix         → copy the artifact (or its contents) there

Bytes only become visible under the final name after they verified,
so a checksum mismatch never leaves a referencable artifact behind.

The transport, checksum and extraction functions are injected; the
defaults are the real implementations.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
import threading
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from offsetup.core.errors import (
    CancelledError,
    ChecksumMismatchError,
    DownloadTransportError,
    UnsupportedArchiveError,
)
from offsetup.core.models.plan import DownloadExtract

logger = logging.getLogger(__name__)

_TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz", ".tar")
_ZIP_SUFFIXES = (".zip",)


class Transport(Protocol):
    """Download capability: write the bytes at ``uri`` into ``dest``."""

    def fetch(self, uri: str, dest: Path, cancel: threading.Event | None = None) -> int: ...


Checksum = Callable[[Path], str]
Extractor = Callable[[Path, Path], list[str]]


def sha512_file(path: Path) -> str:
    """Hex SHA-512 of a file, read in chunks."""
    h = hashlib.sha512()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def archive_format(name: str) -> str | None:
    """``tar`` / ``zip`` for recognised archive names, else None."""
    lower = name.lower()
    if lower.endswith(_TAR_SUFFIXES):
        return "tar"
    if lower.endswith(_ZIP_SUFFIXES):
        return "zip"
    return None


def extract_archive(archive: Path, dest: Path) -> list[str]:
    """Unpack ``archive`` into ``dest``.

    Returns:
        Top-level entry names created in ``dest``.

    Raises:
        UnsupportedArchiveError: unknown format, or a corrupt/unsafe archive.
    """
    fmt = archive_format(archive.name)
    try:
        if fmt == "tar":
            with tarfile.open(archive, "r:*") as tf:
                names = tf.getnames()
                tf.extractall(dest, filter="data")
        elif fmt == "zip":
            with zipfile.ZipFile(archive, "r") as zf:
                names = zf.namelist()
                for name in names:
                    member = PurePosixPath(name)
                    if member.is_absolute() or ".." in member.parts:
                        raise UnsupportedArchiveError(f"Unsafe path {name!r} in {archive.name}")
                zf.extractall(dest)
        else:
            raise UnsupportedArchiveError(f"Cannot extract {archive.name}: unsupported archive format")
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise UnsupportedArchiveError(f"Cannot extract {archive.name}: {e}") from e

    top = {PurePosixPath(n).parts[0] for n in names if PurePosixPath(n).parts}
    return sorted(top)


@dataclass
class PipelineResult:
    """What the pipeline did for one artifact."""

    path: Path
    size: int = 0
    downloaded: bool = False
    verified: bool = False
    extracted: list[str] = field(default_factory=list)
    installed_to: Path | None = None

    def to_metadata(self) -> dict:
        return {
            "path": str(self.path),
            "size": self.size,
            "downloaded": self.downloaded,
            "cached": not self.downloaded,
            "verified": self.verified,
            "extracted": self.extracted,
            "installed_to": str(self.installed_to) if self.installed_to else None,
        }


class ArtifactPipeline:
    """Download/verify/extract, idempotent across runs."""

    def __init__(
        self,
        transport: Transport,
        checksum: Checksum = sha512_file,
        extractor: Extractor = extract_archive,
    ):
        self._transport = transport
        self._checksum = checksum
        self._extractor = extractor

    def run(self, step: DownloadExtract, cancel: threading.Event | None = None) -> PipelineResult:
        """Materialise one artifact.

        Raises:
            DownloadTransportError, ChecksumMismatchError,
            UnsupportedArchiveError, CancelledError
        """
        target_dir = Path(step.target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        dest = target_dir / step.filename
        result = PipelineResult(path=dest)

        if dest.is_file() and step.sha512:
            if self._matches(dest, step.sha512):
                logger.info("Artifact already present and verified: %s", dest)
                result.verified = True
            else:
                logger.warning("Cached artifact %s failed verification; downloading again", dest)
                dest.unlink()

        if not result.verified:
            self._download(step, dest, cancel)
            result.downloaded = True
            result.verified = bool(step.sha512)

        result.size = dest.stat().st_size

        if step.extract:
            _check_cancel(cancel)
            result.extracted = self._extractor(dest, target_dir)
            logger.info("Extracted %s (%d entries)", dest.name, len(result.extracted))

        if step.install_prefix:
            result.installed_to = _install(dest, target_dir, result.extracted, Path(step.install_prefix))

        return result

    def _matches(self, path: Path, expected: str) -> bool:
        return self._checksum(path).lower() == expected.lower()

    def _download(self, step: DownloadExtract, dest: Path, cancel: threading.Event | None) -> None:
        _check_cancel(cancel)
        partial = dest.with_name(dest.name + ".part")
        try:
            size = self._transport.fetch(step.uri, partial, cancel)
        except (DownloadTransportError, CancelledError):
            partial.unlink(missing_ok=True)
            raise
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise DownloadTransportError(f"Download of {step.uri} failed: {e}") from e

        if step.sha512:
            actual = self._checksum(partial)
            if actual.lower() != step.sha512.lower():
                partial.unlink(missing_ok=True)
                raise ChecksumMismatchError(step.uri, step.sha512, actual)
        else:
            logger.warning("No sha512 declared for %s; stored unverified", step.uri)

        partial.replace(dest)
        logger.info("Downloaded %s (%d bytes)", step.uri, size)


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError("Cancelled")


def _install(archive: Path, target_dir: Path, extracted: list[str], prefix: Path) -> Path:
    """Copy the artifact, or its extracted top-level entries, under ``prefix``."""
    prefix.mkdir(parents=True, exist_ok=True)
    sources = [target_dir / name for name in extracted] if extracted else [archive]
    for src in sources:
        dst = prefix / src.name
        if src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)
    logger.info("Installed %s into %s", archive.name, prefix)
    return prefix
