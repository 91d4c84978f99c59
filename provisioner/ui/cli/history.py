"""
CLI command for run history — reads the audit ledger.

Usage::

    provision history
    provision history -n 5 --json
"""

from __future__ import annotations

import json
from pathlib import Path

import click


def _resolve_plan_root(plan_path: Path | None) -> Path:
    """Directory holding the plan file (and its .state/)."""
    if plan_path is None:
        from provisioner.core.config.loader import find_plan_file

        plan_path = find_plan_file()
    return plan_path.resolve().parent if plan_path else Path.cwd()


@click.command()
@click.option("--plan", "plan_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to provision.yml (default: search upward).")
@click.option("-n", "count", default=10, type=click.IntRange(min=1), help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def history(plan_path: Path | None, count: int, as_json: bool) -> None:
    """Show recent provisioning runs."""
    from provisioner.core.use_cases.provision import get_history

    result = get_history(_resolve_plan_root(plan_path), n=count)

    if as_json:
        click.echo(json.dumps({
            "runs": [e.model_dump(mode="json") for e in result.entries],
            "last_run": result.last_report.to_dict() if result.last_report else None,
        }, indent=2))
        return

    if not result.entries:
        click.echo("No runs recorded yet.")
        return

    colors = {"success": "green", "partial_failure": "yellow", "fatal": "red"}
    click.echo()
    for entry in reversed(result.entries):
        click.echo(f"   {entry.timestamp[:19]}  {entry.run_id}  ", nl=False)
        click.secho(f"{entry.status:<15}", fg=colors.get(entry.status, "white"), nl=False)
        click.echo(
            f" {entry.steps_applied} applied, {entry.steps_satisfied} satisfied, "
            f"{entry.steps_failed} failed, {entry.steps_skipped} skipped"
        )
        for err in entry.errors[:3]:
            click.echo(f"       │ {err}")
    click.echo()
