"""
Reconciliation loop — drive every step of a plan to a terminal state.

Per-step state machine::

    PENDING → PROBING → SATISFIED
                      → NEEDS_APPLY → APPLYING → APPLIED
                                              → FAILED → RETRYING → PROBING ...
                                                       → FAILED_FINAL
    (prerequisite failed or skipped)          → SKIPPED

Steps whose prerequisites have all succeeded run concurrently on a
bounded thread pool. Resource tokens serialize steps that share an
external resource (the package database). Step errors never escape a
worker: they become FAILED results, and dependents are SKIPPED.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import StrEnum

from provisioner.adapters.registry import AdapterRegistry
from provisioner.adapters.shell.runner import ProcessTracker, tracked_by
from provisioner.core.config.settings import RunSettings
from provisioner.core.engine.cancel import CancelToken
from provisioner.core.engine.executor import Executor
from provisioner.core.engine.graph import blocked_steps, ready_steps
from provisioner.core.engine.probe import ProbeEngine
from provisioner.core.engine.report import ReportSink
from provisioner.core.engine.tokens import ResourceTokens
from provisioner.core.errors import StepCancelledError, StepError
from provisioner.core.models.plan import Plan
from provisioner.core.models.probe import ProbeStatus
from provisioner.core.models.result import RunReport, StepOutcome, StepResult
from provisioner.core.models.step import Step
from provisioner.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

# How often the loop wakes up to notice a hard cancel.
_POLL_INTERVAL = 0.1


class StepState(StrEnum):
    """Lifecycle states reported through ``on_progress``."""

    PENDING = "pending"
    PROBING = "probing"
    SATISFIED = "satisfied"
    NEEDS_APPLY = "needs_apply"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    RETRYING = "retrying"
    FAILED_FINAL = "failed_final"
    SKIPPED = "skipped"
    WOULD_APPLY = "would_apply"
    CANCELLED = "cancelled"


ProgressCallback = Callable[[str, StepState], None]


class Reconciler:
    """Runs a plan: probe → apply → verify, with retries and concurrency.

    Args:
        registry: Adapters for each classification.
        settings: Concurrency, retry and timeout tunables.
        tokens: Resource tokens (shared if several reconcilers run at once).
        cancel: Cancellation token; the CLI wires it to SIGINT.
        on_progress: Optional ``(step_id, state)`` callback, called from
            worker threads.
        dry_run: Probe only; unsatisfied steps end WOULD_APPLY.
        sleep: Backoff wait; returns True if the wait was cancelled.
            Defaults to an interruptible wait on the cancel token.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        settings: RunSettings | None = None,
        *,
        tokens: ResourceTokens | None = None,
        cancel: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
        dry_run: bool = False,
        sleep: Callable[[float], bool] | None = None,
    ):
        self.settings = settings or RunSettings()
        self.policy = RetryPolicy(
            max_retries=self.settings.max_retries,
            backoff_base=self.settings.backoff_base,
        )
        self.probe_engine = ProbeEngine(registry, self.settings)
        self.executor = Executor(registry, self.settings, self.probe_engine)
        self.tokens = tokens or ResourceTokens()
        self.cancel = cancel or CancelToken()
        self.on_progress = on_progress
        self.dry_run = dry_run
        self._sleep = sleep or self.cancel.wait_hard

    # ── Plan level ───────────────────────────────────────────────

    def run(self, plan: Plan, run_id: str = "") -> RunReport:
        """Reconcile every step in ``plan``. Always returns a report."""
        sink = ReportSink(plan, run_id=run_id, dry_run=self.dry_run)
        logger.info(
            "Run %s: %d steps, concurrency %d%s",
            sink.run_id, len(plan), self.settings.concurrency,
            " (dry-run)" if self.dry_run else "",
        )

        succeeded: set[str] = set()
        failed: set[str] = set()      # failed or skipped
        running: dict[Future[StepResult], Step] = {}
        hard_cancelled = False
        procs = ProcessTracker()
        stop_commands = procs.terminate_all
        self.cancel.on_hard(stop_commands)

        pool = ThreadPoolExecutor(
            max_workers=self.settings.concurrency,
            thread_name_prefix="provision",
        )
        try:
            while True:
                self._cascade_skips(plan, sink, failed)

                if not self.cancel.soft:
                    in_flight = {s.id for s in running.values()}
                    for step in ready_steps(plan, succeeded, sink.recorded(), in_flight):
                        if len(running) >= self.settings.concurrency:
                            break
                        self._progress(step.id, StepState.PENDING)
                        running[pool.submit(self._reconcile, step, procs)] = step

                if not running:
                    break

                done, _ = wait(running, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    step = running.pop(future)
                    result = future.result()
                    sink.record(result)
                    (succeeded if result.ok else failed).add(step.id)

                if self.cancel.hard:
                    hard_cancelled = True
                    break
        finally:
            pool.shutdown(wait=not hard_cancelled, cancel_futures=True)
            self.cancel.remove_on_hard(stop_commands)

        for step in plan:
            if not sink.has(step.id):
                self._progress(step.id, StepState.CANCELLED)
                sink.record(self._cancelled(step))

        report = sink.finalize()
        logger.info("Run %s finished: %s", report.run_id, report.status)
        return report

    def _cascade_skips(self, plan: Plan, sink: ReportSink, failed: set[str]) -> None:
        # Repeat until no newly skipped step blocks another.
        while True:
            blocked = blocked_steps(plan, failed, sink.recorded())
            if not blocked:
                return
            for step, dep in blocked:
                self._progress(step.id, StepState.SKIPPED)
                sink.record(StepResult(
                    step_id=step.id,
                    outcome=StepOutcome.SKIPPED,
                    label=step.label,
                    detail=f"prerequisite '{dep}' did not succeed",
                ))
                failed.add(step.id)

    # ── Step level ───────────────────────────────────────────────

    def _reconcile(self, step: Step, procs: ProcessTracker) -> StepResult:
        """Drive one step to a terminal state. Never raises."""
        with tracked_by(procs):
            return self._reconcile_step(step)

    def _reconcile_step(self, step: Step) -> StepResult:
        started = time.monotonic()
        attempt = 0

        while True:
            try:
                if self.cancel.hard:
                    raise StepCancelledError(step.id, "Cancelled")
                attempt += 1
                return self._attempt(step, attempt, started)
            except StepError as e:
                if not self.policy.should_retry(step, e, attempt):
                    return self._give_up(step, e, attempt, started)
                self._progress(step.id, StepState.FAILED)
                delay = self.policy.delay(attempt)
                logger.warning(
                    "Step '%s' attempt %d/%d failed (%s); retrying in %.1fs",
                    step.id, attempt, self.policy.max_attempts, e, delay,
                )
                self._progress(step.id, StepState.RETRYING)
                if self._sleep(delay):
                    return self._give_up(step, StepCancelledError(step.id, "Cancelled"), attempt, started)
            except Exception as e:
                logger.exception("Unexpected error reconciling '%s'", step.id)
                self._progress(step.id, StepState.FAILED_FINAL)
                return self._failed(step, e, attempt, started)

    def _give_up(self, step: Step, error: StepError, attempts: int, started: float) -> StepResult:
        if isinstance(error, StepCancelledError):
            logger.warning("Step '%s' cancelled", step.id)
            self._progress(step.id, StepState.CANCELLED)
        else:
            logger.error("Step '%s' failed: %s", step.id, error)
            self._progress(step.id, StepState.FAILED)
            self._progress(step.id, StepState.FAILED_FINAL)
        return self._failed(step, error, attempts, started)

    def _attempt(self, step: Step, attempt: int, started: float) -> StepResult:
        with self.tokens.hold(step.tokens):
            if self.cancel.hard:
                raise StepCancelledError(step.id, "Cancelled")
            self._progress(step.id, StepState.PROBING)
            probe = self.probe_engine.probe(step)

            if probe.converged:
                self._progress(step.id, StepState.SATISFIED)
                return StepResult(
                    step_id=step.id,
                    outcome=StepOutcome.SATISFIED,
                    label=step.label,
                    detail=probe.detail,
                    attempts=attempt,
                    duration_ms=_elapsed_ms(started),
                    requires_relogin=probe.status == ProbeStatus.REQUIRES_RELOGIN,
                )

            if self.dry_run:
                self._progress(step.id, StepState.WOULD_APPLY)
                return StepResult(
                    step_id=step.id,
                    outcome=StepOutcome.WOULD_APPLY,
                    label=step.label,
                    detail=probe.detail,
                    attempts=attempt,
                    duration_ms=_elapsed_ms(started),
                )

            self._progress(step.id, StepState.NEEDS_APPLY)
            self._progress(step.id, StepState.APPLYING)
            outcome = self.executor.apply(step, probe)

        self._progress(step.id, StepState.APPLIED)
        detail = outcome.verified.detail if outcome.verified else ""
        if outcome.raced:
            detail = f"apply exited {outcome.returncode} but state converged: {detail}"
        return StepResult(
            step_id=step.id,
            outcome=StepOutcome.APPLIED,
            label=step.label,
            detail=detail,
            attempts=attempt,
            duration_ms=_elapsed_ms(started),
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            requires_relogin=outcome.requires_relogin,
        )

    def _failed(self, step: Step, error: BaseException, attempts: int, started: float) -> StepResult:
        return StepResult(
            step_id=step.id,
            outcome=StepOutcome.FAILED,
            label=step.label,
            error=str(error),
            error_kind=type(error).__name__,
            attempts=attempts,
            duration_ms=_elapsed_ms(started),
            stdout=getattr(error, "stdout", ""),
            stderr=getattr(error, "stderr", ""),
        )

    def _cancelled(self, step: Step) -> StepResult:
        """Result for a step the run never started."""
        error = StepCancelledError(step.id, "Cancelled")
        return StepResult(
            step_id=step.id,
            outcome=StepOutcome.FAILED,
            label=step.label,
            error=str(error),
            error_kind=type(error).__name__,
        )

    def _progress(self, step_id: str, state: StepState) -> None:
        logger.debug("%s: %s", step_id, state)
        if self.on_progress:
            self.on_progress(step_id, state)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
