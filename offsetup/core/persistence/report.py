"""
Report ledger — append-only history of install runs.

Every ``offsetup install`` appends one line to an NDJSON
(newline-delimited JSON) file: the full per-step report of the run.
Entries are redacted before they touch disk; the ledger never holds
a credential or a password-bearing connection URI.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from offsetup.core.observability.redaction import redact

logger = logging.getLogger(__name__)

DEFAULT_REPORT_FILE = Path(".offsetup") / "report.ndjson"


class ReportEntry(BaseModel):
    """A single ledger entry: one install run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    manifest: str = ""
    platform: str = ""
    runtime: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # ok, partial, failed, cancelled
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0

    steps: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: Any) -> ReportEntry:
        """Build from an ``ExecutionReport``."""
        data = report.to_dict()
        return cls(
            operation_id=data["operation_id"],
            manifest=data["manifest"],
            platform=data["platform"],
            runtime=data["runtime"],
            dry_run=data["dry_run"],
            status=data["status"],
            steps_total=data["total"],
            steps_succeeded=data["succeeded"],
            steps_failed=data["failed"],
            steps_skipped=data["skipped"],
            steps=data["steps"],
        )


class ReportWriter:
    """Append-only report ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None):
        self._path = Path(path) if path is not None else DEFAULT_REPORT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: ReportEntry) -> bool:
        """Append a redacted entry to the ledger. Returns False on I/O failure."""
        data = redact(entry.model_dump(mode="json"))
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write report entry: %s", e)
            return False
        logger.debug("Report entry written: %s", entry.operation_id)
        return True

    def read_all(self) -> list[ReportEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(ReportEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt report entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read report ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[ReportEntry]:
        return self.read_all()[-n:]
