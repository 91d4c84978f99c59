"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import Step, Plan, StepResult, RunReport
"""

from provisioner.core.models.plan import Plan, PlanDocument
from provisioner.core.models.probe import ProbeResult, ProbeStatus
from provisioner.core.models.result import RunReport, RunStatus, StepOutcome, StepResult
from provisioner.core.models.step import PACKAGE_DB_TOKEN, Classification, Step

__all__ = [
    "PACKAGE_DB_TOKEN",
    "Classification",
    # plan.py
    "Plan",
    "PlanDocument",
    # probe.py
    "ProbeResult",
    "ProbeStatus",
    # result.py
    "RunReport",
    "RunStatus",
    # step.py
    "Step",
    "StepOutcome",
    "StepResult",
]
