"""
Provisioner — CLI entrypoint.

Usage:
    provision run
    provision run --plan provision.yml --concurrency 2 --only docker-group
    provision check
    provision plan
    provision history
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.engine.cancel import CancelToken
from provisioner.core.observability.logging_config import resolve_level, setup_logging
from provisioner.ui.cli.history import history

_plan_option = click.option(
    "--plan", "plan_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to provision.yml (default: search upward from cwd).",
)
_only_option = click.option(
    "--only", "only",
    multiple=True,
    help="Run only these step ids (comma-separated or repeated) and their prerequisites.",
)


@click.group()
@click.version_option(version=__version__, prog_name="provision")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Provisioner — bring a host to the state a plan describes."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None

    setup_logging(level=resolve_level(level), quiet_third_party=not debug)


@cli.command()
@_plan_option
@click.option("--concurrency", "-j", type=click.IntRange(min=1), default=None,
              help="Maximum steps in flight at once.")
@click.option("--dry-run", is_flag=True, help="Probe only; report what would be applied.")
@_only_option
@click.option("--max-retries", type=click.IntRange(min=0), default=None,
              help="Retries per step after the first attempt.")
@click.option("--probe-timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Seconds before a probe is abandoned.")
@click.option("--apply-timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Seconds before an apply is terminated.")
@click.option("--mock", is_flag=True, help="Use the mock adapter (no real execution).")
@click.option("--no-save", is_flag=True, help="Don't write .state/last_run.json or the audit ledger.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the report as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    plan_path: Path | None,
    concurrency: int | None,
    dry_run: bool,
    only: tuple[str, ...],
    max_retries: int | None,
    probe_timeout: float | None,
    apply_timeout: float | None,
    mock: bool,
    no_save: bool,
    as_json: bool,
) -> None:
    """Reconcile the host against the plan.

    Exit status: 0 when every step converged, 1 when some step failed
    or was skipped, 2 when the plan itself was rejected.
    """
    _execute(
        ctx,
        plan_path=plan_path,
        only=only,
        overrides={
            "concurrency": concurrency,
            "max_retries": max_retries,
            "probe_timeout": probe_timeout,
            "apply_timeout": apply_timeout,
        },
        dry_run=dry_run,
        mock=mock,
        save=not no_save,
        as_json=as_json,
    )


@cli.command()
@_plan_option
@_only_option
@click.option("--mock", is_flag=True, help="Use the mock adapter (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the report as JSON.")
@click.pass_context
def check(
    ctx: click.Context,
    plan_path: Path | None,
    only: tuple[str, ...],
    mock: bool,
    as_json: bool,
) -> None:
    """Probe every step without applying anything (same as run --dry-run)."""
    _execute(
        ctx,
        plan_path=plan_path,
        only=only,
        overrides={},
        dry_run=True,
        mock=mock,
        save=False,
        as_json=as_json,
    )


@cli.command("plan")
@_plan_option
@_only_option
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def show_plan(plan_path: Path | None, only: tuple[str, ...], as_json: bool) -> None:
    """Validate the plan and list steps in execution order."""
    from provisioner.core.use_cases.provision import describe_plan
    from provisioner.ui.cli.render import render_plan

    result = describe_plan(plan_path, only=_split_ids(only))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(2)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(2)

    assert result.plan is not None
    render_plan(result.plan)


def _execute(
    ctx: click.Context,
    *,
    plan_path: Path | None,
    only: tuple[str, ...],
    overrides: dict,
    dry_run: bool,
    mock: bool,
    save: bool,
    as_json: bool,
) -> None:
    from provisioner.core.use_cases.provision import run_provision
    from provisioner.ui.cli.render import render_report

    cancel = CancelToken()
    with _sigint_cancels(cancel):
        result = run_provision(
            plan_path,
            only=_split_ids(only),
            overrides=overrides,
            dry_run=dry_run,
            mock_mode=mock,
            save=save,
            cancel=cancel,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif not ctx.obj.get("quiet") or result.exit_code:
        render_report(result.report, verbose=ctx.obj.get("verbose", False))

    sys.exit(result.exit_code)


def _split_ids(values: tuple[str, ...]) -> list[str]:
    return [part.strip() for value in values for part in value.split(",") if part.strip()]


@contextmanager
def _sigint_cancels(cancel: CancelToken) -> Iterator[None]:
    """Route Ctrl-C to ``cancel`` while a run is in progress.

    First press: soft cancel. Second: hard cancel. A third restores the
    default behaviour and raises KeyboardInterrupt.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum: int, frame: object) -> None:
        if cancel.hard:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        cancel.request()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


# ── Register sub-commands from provisioner/ui/cli/ ─────────────────

cli.add_command(history)


if __name__ == "__main__":
    cli()
