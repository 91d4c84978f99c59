"""
Dependency graph — order steps by their declared prerequisites.

Pure functions: no I/O, no subprocess. Everything that can make a plan
invalid (duplicate ids, dangling references, cycles) is detected here,
before the reconciliation loop is allowed to touch the host.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable

from provisioner.core.errors import (
    CycleError,
    DuplicateStepError,
    UnknownDependencyError,
    UnknownStepError,
)
from provisioner.core.models.plan import Plan
from provisioner.core.models.step import Step

logger = logging.getLogger(__name__)


def build_plan(steps: Iterable[Step], name: str = "") -> Plan:
    """Order declared steps topologically.

    Kahn's algorithm with a min-heap keyed by declaration index, so that
    independent steps always come out in the order they were declared
    and re-runs produce identical logs.

    Raises:
        DuplicateStepError: Two steps share an id.
        UnknownDependencyError: A prerequisite is not declared.
        CycleError: The prerequisite graph has a cycle.
    """
    declared = list(steps)

    position: dict[str, int] = {}
    for i, step in enumerate(declared):
        if step.id in position:
            raise DuplicateStepError(step.id)
        position[step.id] = i

    for step in declared:
        for dep in step.prerequisites:
            if dep not in position:
                raise UnknownDependencyError(step.id, dep)

    in_degree = {s.id: len(s.prerequisites) for s in declared}
    successors: dict[str, list[str]] = {s.id: [] for s in declared}
    for step in declared:
        for dep in step.prerequisites:
            successors[dep].append(step.id)

    heap = [position[sid] for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(heap)

    ordered: list[Step] = []
    while heap:
        step = declared[heapq.heappop(heap)]
        ordered.append(step)
        for succ in successors[step.id]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                heapq.heappush(heap, position[succ])

    if len(ordered) < len(declared):
        remaining = [s for s in declared if in_degree[s.id] > 0]
        raise CycleError(find_cycle(remaining))

    logger.debug("Plan order: %s", " → ".join(s.id for s in ordered))
    return Plan(steps=tuple(ordered), name=name)


def find_cycle(steps: list[Step]) -> list[str]:
    """Return one cycle among ``steps`` as an id path ending where it started.

    Only called once Kahn's algorithm has proven a cycle exists; every
    step passed in has at least one unresolved prerequisite inside the set.
    """
    by_id = {s.id: s for s in steps}
    visiting: list[str] = []
    on_path: set[str] = set()
    done: set[str] = set()

    def visit(sid: str) -> list[str] | None:
        visiting.append(sid)
        on_path.add(sid)
        for dep in by_id[sid].prerequisites:
            if dep not in by_id or dep in done:
                continue
            if dep in on_path:
                start = visiting.index(dep)
                return visiting[start:] + [dep]
            found = visit(dep)
            if found:
                return found
        visiting.pop()
        on_path.discard(sid)
        done.add(sid)
        return None

    for step in steps:
        if step.id in done:
            continue
        cycle = visit(step.id)
        if cycle:
            # Walked prerequisite edges; report in execution direction.
            return list(reversed(cycle))
    return [s.id for s in steps]


def select_steps(plan: Plan, only: Iterable[str]) -> Plan:
    """Restrict a plan to the given ids plus everything they depend on.

    Order is preserved from the full plan.

    Raises:
        UnknownStepError: An id in ``only`` is not in the plan.
    """
    wanted: set[str] = set()
    stack: list[str] = []
    for sid in only:
        if sid not in plan:
            raise UnknownStepError(sid)
        stack.append(sid)

    while stack:
        sid = stack.pop()
        if sid in wanted:
            continue
        wanted.add(sid)
        step = plan.get(sid)
        assert step is not None  # plan is closed under prerequisites
        stack.extend(step.prerequisites)

    return Plan(steps=tuple(s for s in plan if s.id in wanted), name=plan.name)


def ready_steps(
    plan: Plan,
    succeeded: set[str],
    finished: set[str],
    running: set[str],
) -> list[Step]:
    """Steps whose prerequisites have all succeeded and that haven't started."""
    ready: list[Step] = []
    for step in plan:
        if step.id in finished or step.id in running:
            continue
        if all(dep in succeeded for dep in step.prerequisites):
            ready.append(step)
    return ready


def blocked_steps(plan: Plan, failed: set[str], finished: set[str]) -> list[tuple[Step, str]]:
    """Unfinished steps with a failed or skipped prerequisite.

    Returns (step, blocking prerequisite id) pairs in plan order.
    """
    blocked: list[tuple[Step, str]] = []
    for step in plan:
        if step.id in finished:
            continue
        for dep in step.prerequisites:
            if dep in failed:
                blocked.append((step, dep))
                break
    return blocked
