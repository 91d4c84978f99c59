"""
Mock adapter — in-memory test double for any classification.

Simulates a host: every step starts unsatisfied (unless told otherwise)
and becomes satisfied once applied. Used by ``--mock`` runs and by the
test suite, where it can be scripted to fail probes or applies, and
records how many calls overlapped per resource token.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable

from provisioner.adapters.base import Adapter, ExecutionContext
from provisioner.adapters.shell.runner import CommandResult
from provisioner.core.errors import ProbeError
from provisioner.core.models.probe import ProbeResult
from provisioner.core.models.step import Classification


class MockAdapter(Adapter):
    """Universal mock adapter.

    By default every probe answers from an in-memory set of satisfied
    step ids and every apply succeeds and adds the step to that set.
    """

    def __init__(
        self,
        classification: Classification = Classification.COMMAND,
        satisfied: Iterable[str] = (),
        probe_delay: float = 0.0,
        apply_delay: float = 0.0,
    ):
        self._classification = classification
        self._satisfied: set[str] = set(satisfied)
        self._relogin: set[str] = set()
        self.probe_delay = probe_delay
        self.apply_delay = apply_delay

        self._apply_failures: dict[str, dict] = {}
        self._probe_failures: dict[str, dict] = {}
        self._hooks: dict[str, Callable[[ExecutionContext], None]] = {}

        self._lock = threading.Lock()
        self.probe_calls: Counter[str] = Counter()
        self.apply_calls: Counter[str] = Counter()
        self.call_log: list[tuple[str, str]] = []

        # token → current / peak number of calls inside the adapter
        self.active: Counter[str] = Counter()
        self.max_active: Counter[str] = Counter()

    @property
    def classification(self) -> Classification:
        return self._classification

    # ── Scripting ────────────────────────────────────────────────

    def set_satisfied(self, step_id: str, value: bool = True) -> None:
        with self._lock:
            if value:
                self._satisfied.add(step_id)
            else:
                self._satisfied.discard(step_id)

    def is_satisfied(self, step_id: str) -> bool:
        with self._lock:
            return step_id in self._satisfied

    def fail_apply(
        self,
        step_id: str,
        times: int | None = None,
        returncode: int = 1,
        stderr: str = "mock failure",
        timed_out: bool = False,
        satisfy_anyway: bool = False,
    ) -> None:
        """Make applies of ``step_id`` fail ``times`` times (None = always).

        ``satisfy_anyway`` simulates a concurrent process that reaches the
        desired state while our apply fails.
        """
        self._apply_failures[step_id] = {
            "remaining": times,
            "returncode": returncode,
            "stderr": stderr,
            "timed_out": timed_out,
            "satisfy_anyway": satisfy_anyway,
        }

    def fail_probe(
        self,
        step_id: str,
        times: int | None = None,
        error: type[ProbeError] = ProbeError,
    ) -> None:
        """Make probes of ``step_id`` raise ``error`` ``times`` times (None = always)."""
        self._probe_failures[step_id] = {"remaining": times, "error": error}

    def require_relogin(self, step_id: str) -> None:
        """After apply, report REQUIRES_RELOGIN instead of SATISFIED."""
        self._relogin.add(step_id)

    def on_apply(self, step_id: str, hook: Callable[[ExecutionContext], None]) -> None:
        """Run ``hook`` inside apply, e.g. to block on an event."""
        self._hooks[step_id] = hook

    # ── Adapter protocol ─────────────────────────────────────────

    def validate(self, ctx: ExecutionContext) -> tuple[bool, str]:
        if ctx.step.probe.get("invalid"):
            return False, "Step marked invalid"
        return True, ""

    def probe(self, ctx: ExecutionContext) -> ProbeResult:
        step_id = ctx.step.id
        with self._enter(ctx, "probe"):
            if self.probe_delay:
                time.sleep(self.probe_delay)
            failure = self._take(self._probe_failures, step_id)
            if failure is not None:
                raise failure["error"](step_id, "mock probe failure")
            with self._lock:
                done = step_id in self._satisfied
            if not done:
                return ProbeResult.unsatisfied("mock: not applied")
            if step_id in self._relogin:
                return ProbeResult.requires_relogin("mock: relogin needed")
            return ProbeResult.satisfied("mock: applied")

    def apply(self, ctx: ExecutionContext) -> CommandResult:
        step_id = ctx.step.id
        with self._enter(ctx, "apply"):
            if self.apply_delay:
                time.sleep(self.apply_delay)
            hook = self._hooks.get(step_id)
            if hook is not None:
                hook(ctx)
            failure = self._take(self._apply_failures, step_id)
            if failure is not None:
                if failure["satisfy_anyway"]:
                    self.set_satisfied(step_id)
                return CommandResult(
                    command=["mock", step_id],
                    returncode=failure["returncode"],
                    stdout="mock stdout",
                    stderr=failure["stderr"],
                    timed_out=failure["timed_out"],
                )
            self.set_satisfied(step_id)
            return CommandResult(command=["mock", step_id], returncode=0, stdout=f"[mock] applied {step_id}")

    # ── Internals ────────────────────────────────────────────────

    def _take(self, table: dict[str, dict], step_id: str) -> dict | None:
        with self._lock:
            entry = table.get(step_id)
            if entry is None:
                return None
            if entry["remaining"] is None:
                return entry
            if entry["remaining"] <= 0:
                return None
            entry["remaining"] -= 1
            return entry

    def _enter(self, ctx: ExecutionContext, kind: str) -> _Occupancy:
        return _Occupancy(self, ctx.step.tokens, kind, ctx.step.id)

    def reset(self) -> None:
        """Clear call counters and scripted failures (keeps satisfied state)."""
        with self._lock:
            self.probe_calls.clear()
            self.apply_calls.clear()
            self.call_log.clear()
            self.max_active.clear()
            self._apply_failures.clear()
            self._probe_failures.clear()


class _Occupancy:
    """Counts concurrent calls per token while inside the adapter."""

    def __init__(self, mock: MockAdapter, tokens: tuple[str, ...], kind: str, step_id: str):
        self.mock = mock
        self.tokens = tokens
        self.kind = kind
        self.step_id = step_id

    def __enter__(self) -> None:
        m = self.mock
        with m._lock:
            counter = m.probe_calls if self.kind == "probe" else m.apply_calls
            counter[self.step_id] += 1
            m.call_log.append((self.kind, self.step_id))
            for token in self.tokens:
                m.active[token] += 1
                m.max_active[token] = max(m.max_active[token], m.active[token])

    def __exit__(self, *exc: object) -> None:
        with self.mock._lock:
            for token in self.tokens:
                self.mock.active[token] -= 1
