"""
Result models — StepResult and RunReport.

StepResults are created by the reconciliation loop once a step reaches
a terminal state and are owned by the report sink from then on. The
RunReport is produced once, at the end of the run, and never mutated.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepOutcome(StrEnum):
    """Terminal outcome of a step."""

    SATISFIED = "satisfied"      # already in desired state, nothing applied
    APPLIED = "applied"          # apply ran and a re-probe confirmed it
    FAILED = "failed"            # failed after all retries (or cancelled)
    SKIPPED = "skipped"          # a prerequisite failed or was skipped
    WOULD_APPLY = "would_apply"  # dry-run only: probe says unsatisfied

    @property
    def ok(self) -> bool:
        return self in (StepOutcome.SATISFIED, StepOutcome.APPLIED, StepOutcome.WOULD_APPLY)


class RunStatus(StrEnum):
    """Aggregate status of a run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FATAL = "fatal"


_EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.PARTIAL_FAILURE: 1,
    RunStatus.FATAL: 2,
}


class StepResult(BaseModel):
    """Outcome of reconciling one step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    outcome: StepOutcome
    label: str = ""
    detail: str = ""                  # last probe answer, or skip reason
    error: str | None = None
    error_kind: str | None = None     # exception class name
    attempts: int = 0
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    requires_relogin: bool = False
    finished_at: str = Field(default_factory=_now_iso)

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    @property
    def cancelled(self) -> bool:
        return self.error_kind == "StepCancelledError"


class RunReport(BaseModel):
    """Aggregate report for one provisioning run."""

    model_config = ConfigDict(frozen=True)

    run_id: str = ""
    plan_name: str = ""
    status: RunStatus
    results: tuple[StepResult, ...] = ()
    dry_run: bool = False
    fatal_error: str | None = None
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)

    @classmethod
    def fatal(cls, error: Exception | str, run_id: str = "", plan_name: str = "") -> RunReport:
        """Report for a run whose plan could not be constructed."""
        return cls(
            run_id=run_id,
            plan_name=plan_name,
            status=RunStatus.FATAL,
            fatal_error=str(error),
        )

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.status]

    def count(self, outcome: StepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def failures(self) -> list[StepResult]:
        return [r for r in self.results if r.outcome == StepOutcome.FAILED]

    def get(self, step_id: str) -> StepResult | None:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "plan": self.plan_name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "dry_run": self.dry_run,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "counts": {o.value: self.count(o) for o in StepOutcome},
            "results": [r.model_dump(mode="json") for r in self.results],
        }
