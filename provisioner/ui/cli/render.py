"""
Human-readable rendering of run reports.

The summary goes to stdout. Failures, with the command output captured
from the failing apply, go to stderr so they survive ``> summary.txt``.
"""

from __future__ import annotations

import click

from provisioner.core.models.plan import Plan
from provisioner.core.models.result import RunReport, RunStatus, StepOutcome, StepResult

_MARKERS = {
    StepOutcome.SATISFIED: ("✓", "green"),
    StepOutcome.APPLIED: ("✓", "cyan"),
    StepOutcome.WOULD_APPLY: ("~", "yellow"),
    StepOutcome.FAILED: ("✗", "red"),
    StepOutcome.SKIPPED: ("⊘", "yellow"),
}

_STATUS_COLORS = {
    RunStatus.SUCCESS: "green",
    RunStatus.PARTIAL_FAILURE: "yellow",
    RunStatus.FATAL: "red",
}

# Lines of captured output shown per failure
_OUTPUT_LINES = 20


def render_report(report: RunReport, verbose: bool = False) -> None:
    if report.status == RunStatus.FATAL:
        click.secho(f"❌ Plan rejected: {report.fatal_error}", fg="red", bold=True, err=True)
        return

    title = "Dry run" if report.dry_run else "Run"
    click.secho(f"\n⚙️  {title}: {report.plan_name or report.run_id}", fg="cyan", bold=True)
    click.echo(f"   {report.run_id}")
    click.echo()

    for result in report.results:
        _render_line(result, verbose)

    click.echo()
    counts = ", ".join(
        f"{report.count(o)} {o.value.replace('_', ' ')}"
        for o in StepOutcome
        if report.count(o)
    )
    click.secho(
        f"   Result: {report.status.value} ({counts or 'no steps'})",
        fg=_STATUS_COLORS[report.status],
        bold=True,
    )
    relogin = [r.step_id for r in report.results if r.requires_relogin]
    if relogin:
        click.secho(
            f"   ⚠️  Log out and back in for these to take effect: {', '.join(relogin)}",
            fg="yellow",
        )
    click.echo()

    render_failures(report)


def _render_line(result: StepResult, verbose: bool) -> None:
    marker, color = _MARKERS[result.outcome]
    click.secho(f"   {marker} {result.step_id} ", fg=color, nl=False)
    note = result.outcome.value.replace("_", " ")
    if result.cancelled:
        note = "cancelled"
    elif result.outcome == StepOutcome.SKIPPED and result.detail:
        note = f"skipped: {result.detail}"
    timing = f" ({result.duration_ms}ms)" if result.duration_ms else ""
    retries = f" after {result.attempts} attempts" if result.attempts > 1 else ""
    click.echo(f"{note}{retries}{timing}")
    if verbose and result.detail and result.outcome != StepOutcome.SKIPPED:
        click.echo(f"     │ {result.detail}")


def render_failures(report: RunReport) -> None:
    """Write each failed step with its captured output to stderr."""
    failures = [r for r in report.failures if not r.cancelled]
    if not failures:
        return

    click.secho("Failures:", fg="red", bold=True, err=True)
    for result in failures:
        click.secho(f"  ✗ {result.step_id} [{result.error_kind}]: {result.error}", fg="red", err=True)
        for label, text in (("stdout", result.stdout), ("stderr", result.stderr)):
            if not text.strip():
                continue
            click.echo(f"    {label}:", err=True)
            for line in text.rstrip().splitlines()[-_OUTPUT_LINES:]:
                click.echo(f"      │ {line}", err=True)
    click.echo(err=True)


def render_plan(plan: Plan) -> None:
    click.secho(f"\n📋 {plan.name}", fg="cyan", bold=True)
    click.echo(f"   {len(plan)} steps, in execution order")
    click.echo()
    for index, step in enumerate(plan, start=1):
        click.secho(f"   {index:>3}. {step.id} ", bold=True, nl=False)
        click.echo(f"[{step.classification}]", nl=False)
        if step.label != step.id:
            click.echo(f" {step.label}", nl=False)
        click.echo()
        if step.prerequisites:
            click.echo(f"        after: {', '.join(step.prerequisites)}")
        if step.tokens:
            click.echo(f"        tokens: {', '.join(step.tokens)}")
    click.echo()
