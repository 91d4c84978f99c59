"""
Report sink — append-only collection of StepResults.

Workers hand their results to the sink as steps finish; the sink is the
only owner of results from then on. ``finalize()`` seals it and produces
the RunReport; nothing can be added afterwards.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import UTC, datetime

from provisioner.core.models.plan import Plan
from provisioner.core.models.result import (
    RunReport,
    RunStatus,
    StepOutcome,
    StepResult,
)

logger = logging.getLogger(__name__)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


class ReportSink:
    """Thread-safe, append-only result aggregation for one run."""

    def __init__(self, plan: Plan, run_id: str = "", dry_run: bool = False):
        self._plan = plan
        self._run_id = run_id or generate_run_id()
        self._dry_run = dry_run
        self._results: dict[str, StepResult] = {}
        self._lock = threading.Lock()
        self._sealed = False
        self._started_at = datetime.now(UTC).isoformat()

    @property
    def run_id(self) -> str:
        return self._run_id

    def record(self, result: StepResult) -> None:
        """Record a terminal result.

        Raises:
            ValueError: The step is unknown, already recorded, or the
                sink is sealed.
        """
        with self._lock:
            if self._sealed:
                raise ValueError(f"Report already finalized; cannot record '{result.step_id}'")
            if result.step_id not in self._plan:
                raise ValueError(f"Step '{result.step_id}' is not part of this plan")
            if result.step_id in self._results:
                raise ValueError(f"Result for '{result.step_id}' already recorded")
            self._results[result.step_id] = result

        marker = {
            StepOutcome.SATISFIED: "✓",
            StepOutcome.APPLIED: "✓",
            StepOutcome.WOULD_APPLY: "~",
            StepOutcome.FAILED: "✗",
            StepOutcome.SKIPPED: "⊘",
        }[result.outcome]
        logger.info("%s %s → %s", marker, result.step_id, result.outcome)

    def has(self, step_id: str) -> bool:
        with self._lock:
            return step_id in self._results

    def recorded(self) -> set[str]:
        with self._lock:
            return set(self._results)

    def finalize(self) -> RunReport:
        """Seal the sink and build the RunReport (results in plan order)."""
        with self._lock:
            self._sealed = True
            results = tuple(self._results[s.id] for s in self._plan if s.id in self._results)

        missing = [s.id for s in self._plan if s.id not in self._results]
        if missing:
            # The loop records every step; a gap is a bug, not a user error.
            logger.error("No result recorded for: %s", ", ".join(missing))

        return RunReport(
            run_id=self._run_id,
            plan_name=self._plan.name,
            status=compute_status(results, missing=bool(missing)),
            results=results,
            dry_run=self._dry_run,
            started_at=self._started_at,
            ended_at=datetime.now(UTC).isoformat(),
        )


def compute_status(results: tuple[StepResult, ...], missing: bool = False) -> RunStatus:
    """SUCCESS if every step converged, otherwise PARTIAL_FAILURE."""
    if missing or any(not r.ok for r in results):
        return RunStatus.PARTIAL_FAILURE
    return RunStatus.SUCCESS
