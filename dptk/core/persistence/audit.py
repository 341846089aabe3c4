"""
Apply ledger — append-only history of apply runs.

Every ``dptk apply`` writes one entry to an NDJSON file next to the
config, successful or not. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """One apply run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    project_id: str = ""
    baseline_version: str = ""

    status: str = ""               # ok, failed, dry-run
    steps_total: int = 0
    steps_succeeded: int = 0
    failed_step: str | None = None
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only ledger writer. The file is created on first write."""

    def __init__(self, path: Path | None = None, root: Path | None = None):
        if path is not None:
            self._path = path
        elif root is not None:
            self._path = root / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_DIR) / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.project_id, entry.operation_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
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
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20, project_id: str | None = None) -> list[AuditEntry]:
        entries = self.read_all()
        if project_id:
            entries = [e for e in entries if e.project_id == project_id]
        return entries[-n:]
