"""
Provision use case — load a plan and reconcile the host against it.

This is the top-level orchestrator: it loads the plan file, resolves
settings, builds the dependency graph, runs the reconciliation loop
and persists the report. The full vertical slice from ``provision run``
to an audited RunReport.

Plan-level errors never raise out of here: they become a FATAL report
with no step executed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from provisioner.adapters.mock import MockAdapter
from provisioner.adapters.registry import AdapterRegistry, default_registry
from provisioner.core.config.loader import find_plan_file, load_plan_document
from provisioner.core.config.settings import RunSettings, resolve_settings
from provisioner.core.engine.cancel import CancelToken
from provisioner.core.engine.graph import build_plan, select_steps
from provisioner.core.engine.reconcile import ProgressCallback, Reconciler
from provisioner.core.engine.report import generate_run_id
from provisioner.core.errors import PlanError
from provisioner.core.models.plan import Plan
from provisioner.core.models.result import RunReport
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import default_state_path, load_report, save_report

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Everything a caller may want to show about a run."""

    report: RunReport
    plan: Plan | None = None
    plan_path: Path | None = None
    settings: RunSettings | None = None

    @property
    def exit_code(self) -> int:
        return self.report.exit_code

    def to_dict(self) -> dict[str, Any]:
        result = self.report.to_dict()
        if self.plan_path is not None:
            result["plan_path"] = str(self.plan_path)
        if self.settings is not None:
            result["settings"] = self.settings.model_dump()
        return result


def prepare_plan(
    plan_path: Path | None = None,
    only: Sequence[str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[Plan, Path, RunSettings]:
    """Load, validate and order a plan.

    Raises:
        PlanError: The plan cannot be loaded, has an unknown or
            duplicate id, a cycle, or ``only`` names an unknown step.
    """
    document, path = load_plan_document(plan_path)
    settings = resolve_settings(document.settings, overrides, environ)
    plan = build_plan(document.steps, name=document.name)
    if only:
        plan = select_steps(plan, only)
        logger.info("Restricted to %d steps via --only", len(plan))
    return plan, path, settings


def run_provision(
    plan_path: Path | None = None,
    *,
    only: Sequence[str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    save: bool = True,
    registry: AdapterRegistry | None = None,
    cancel: CancelToken | None = None,
    on_progress: ProgressCallback | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProvisionResult:
    """Bring the host to the state described by the plan.

    Args:
        plan_path: Explicit plan file. None searches upward from cwd.
        only: Step ids to run (their prerequisites are pulled in).
        overrides: Settings given on the command line.
        dry_run: Probe only; report what would be applied.
        mock_mode: Use the in-memory mock adapter for every step.
        save: Persist the report and append to the audit ledger.
        registry: Pre-configured adapter registry (wins over ``mock_mode``).
        cancel: Cancellation token, usually wired to SIGINT.
        on_progress: Per-step state callback.
        environ: Environment for PROVISION_* settings (default: os.environ).

    Returns:
        ProvisionResult; ``result.exit_code`` is 0, 1 or 2.
    """
    run_id = generate_run_id()

    try:
        plan, path, settings = prepare_plan(plan_path, only, overrides, environ)
    except PlanError as e:
        logger.error("Plan rejected: %s", e)
        report = RunReport.fatal(e, run_id=run_id)
        plan_root = _plan_root(plan_path)
        if save and not dry_run and plan_root is not None:
            AuditWriter(plan_root=plan_root).write(AuditEntry.from_report(report))
        return ProvisionResult(report=report)

    if registry is None:
        registry = AdapterRegistry(mock_adapter=MockAdapter()) if mock_mode else default_registry()

    reconciler = Reconciler(
        registry,
        settings,
        cancel=cancel,
        on_progress=on_progress,
        dry_run=dry_run,
    )
    report = reconciler.run(plan, run_id=run_id)

    if save and not dry_run:
        persist_report(report, path.parent)

    return ProvisionResult(report=report, plan=plan, plan_path=path, settings=settings)


def persist_report(report: RunReport, plan_root: Path) -> None:
    """Save the report as the last run and append it to the audit ledger."""
    try:
        save_report(report, default_state_path(plan_root))
    except OSError as e:
        logger.error("Could not save report: %s", e)
    AuditWriter(plan_root=plan_root).write(AuditEntry.from_report(report))


def _plan_root(plan_path: Path | None) -> Path | None:
    """Directory of the plan file, if there is one, for a rejected plan."""
    if plan_path is None:
        plan_path = find_plan_file()
    if plan_path is None or not plan_path.is_file():
        return None
    return plan_path.resolve().parent


# ── Read-only queries ───────────────────────────────────────────


@dataclass
class PlanDescription:
    """A validated plan in execution order, for ``provision plan``."""

    plan: Plan | None = None
    plan_path: Path | None = None
    settings: RunSettings | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        assert self.plan is not None
        return {
            "plan_path": str(self.plan_path),
            "settings": self.settings.model_dump() if self.settings else {},
            **self.plan.to_dict(),
        }


def describe_plan(
    plan_path: Path | None = None,
    only: Sequence[str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> PlanDescription:
    """Validate the plan and return it in execution order, without probing."""
    try:
        plan, path, settings = prepare_plan(plan_path, only, overrides)
    except PlanError as e:
        return PlanDescription(error=str(e))
    return PlanDescription(plan=plan, plan_path=path, settings=settings)


@dataclass
class History:
    """Audit ledger entries and the last saved report."""

    entries: list[AuditEntry] = field(default_factory=list)
    last_report: RunReport | None = None
    plan_root: Path | None = None


def get_history(plan_root: Path, n: int = 10) -> History:
    """Most recent ``n`` runs for the plan in ``plan_root``."""
    return History(
        entries=AuditWriter(plan_root=plan_root).read_recent(n),
        last_report=load_report(default_state_path(plan_root)),
        plan_root=plan_root,
    )
