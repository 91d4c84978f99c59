"""
Audit ledger — append-only history of provisioning runs.

Each run appends one summary line to an NDJSON (newline-delimited JSON)
file. Entries are never modified or deleted; ``provision history``
reads them back.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from provisioner.core.models.result import RunReport, StepOutcome

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry (one per run)."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    plan: str = ""
    status: str = ""               # success, partial_failure, fatal
    dry_run: bool = False

    steps_total: int = 0
    steps_satisfied: int = 0
    steps_applied: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, **context: Any) -> AuditEntry:
        errors = [f"{r.step_id}: {r.error}" for r in report.failures]
        if report.fatal_error:
            errors.insert(0, report.fatal_error)
        return cls(
            run_id=report.run_id,
            plan=report.plan_name,
            status=report.status.value,
            dry_run=report.dry_run,
            steps_total=len(report.results),
            steps_satisfied=report.count(StepOutcome.SATISFIED),
            steps_applied=report.count(StepOutcome.APPLIED),
            steps_failed=report.count(StepOutcome.FAILED),
            steps_skipped=report.count(StepOutcome.SKIPPED),
            duration_ms=_span_ms(report.started_at, report.ended_at),
            errors=errors,
            context=context,
        )


class AuditWriter:
    """Append-only audit ledger writer."""

    def __init__(self, path: Path | None = None, plan_root: Path | None = None):
        if path is not None:
            self._path = path
        elif plan_root is not None:
            self._path = plan_root / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_DIR) / DEFAULT_AUDIT_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an entry. Write failures are logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s", entry.run_id)
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
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        return self.read_all()[-n:] if n > 0 else []


def _span_ms(started: str, ended: str) -> int:
    try:
        delta = datetime.fromisoformat(ended) - datetime.fromisoformat(started)
    except ValueError:
        return 0
    return max(0, int(delta.total_seconds() * 1000))
