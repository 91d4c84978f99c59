"""
Last-run persistence — atomic read/write of the most recent RunReport.

The report is stored as JSON in ``.state/last_run.json`` next to the
plan file. Writes go to a temp file in the same directory and are then
renamed into place, so a crash mid-write never leaves a torn file.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError

from provisioner.core.models.result import RunReport

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "last_run.json"


def default_state_path(plan_root: Path) -> Path:
    """Where the last report for a plan directory lives."""
    return plan_root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_report(path: Path) -> RunReport | None:
    """Load the last saved report, or None if there is none (or it is unreadable)."""
    if not path.is_file():
        logger.debug("No saved report at %s", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return RunReport.model_validate(data)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt report file %s: %s", path, e)
    except ValidationError as e:
        logger.warning("Report file %s does not match the current format: %s", path, e)
    except OSError as e:
        logger.warning("Cannot read report from %s: %s", path, e)
    return None


def save_report(report: RunReport, path: Path) -> None:
    """Save ``report`` to ``path`` (atomic write)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(report.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".last_run_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
        tmp.replace(path)
        logger.debug("Report saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save report to %s", path)
        raise
