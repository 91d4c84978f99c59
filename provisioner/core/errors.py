"""
Error taxonomy — every failure the provisioner can report.

Two families:

    PlanError   → the plan itself is unusable. Raised before any probe
                  or apply runs, so an invalid plan never touches the host.
    StepError   → something went wrong while reconciling one step. These
                  are captured into StepResults by the reconciliation loop
                  and never abort sibling steps.

Retry eligibility is a property of the error class (``retryable``), not
of the call site.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisioner errors."""

    retryable: bool = False


# ── Plan errors (fatal, no side effects) ────────────────────────────


class PlanError(ProvisionError):
    """The plan could not be constructed."""


class PlanLoadError(PlanError):
    """The plan document is missing, unreadable or fails validation."""


class DuplicateStepError(PlanError):
    """Two steps declare the same identifier."""

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Duplicate step id: '{step_id}'")


class UnknownDependencyError(PlanError):
    """A step names a prerequisite that is not declared in the plan."""

    def __init__(self, step_id: str, missing: str):
        self.step_id = step_id
        self.missing = missing
        super().__init__(
            f"Step '{step_id}' depends on unknown step '{missing}'"
        )


class UnknownStepError(PlanError):
    """A step selected with ``--only`` does not exist in the plan."""

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"No step named '{step_id}' in plan")


class CycleError(PlanError):
    """The prerequisite graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


# ── Step errors (captured per step) ─────────────────────────────────


class StepError(ProvisionError):
    """Failure while reconciling a single step."""

    def __init__(self, step_id: str, message: str):
        self.step_id = step_id
        super().__init__(message)


class StepDefinitionError(StepError):
    """The step's probe/apply spec is malformed. Never retried."""


class StepTimeoutError(StepError):
    """A probe or apply exceeded its time budget."""

    retryable = True


class ProbeError(StepError):
    """The probe could not determine state (e.g. package db locked)."""

    retryable = True


class ProbeTimeoutError(ProbeError, StepTimeoutError):
    """The probe did not answer within the probe timeout."""


class ApplyError(StepError):
    """The apply action failed. Carries the captured subprocess output."""

    def __init__(
        self,
        step_id: str,
        message: str,
        *,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(step_id, message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ApplyTimeoutError(ApplyError, StepTimeoutError):
    """The apply subprocess was terminated after exceeding its timeout."""

    retryable = True


class StepCancelledError(StepError):
    """The run was cancelled before this step could finish."""
