"""
Tests for the dependency graph — ordering, validation and selection.
"""

import pytest

from provisioner.core.engine.graph import (
    blocked_steps,
    build_plan,
    ready_steps,
    select_steps,
)
from provisioner.core.errors import (
    CycleError,
    DuplicateStepError,
    PlanError,
    UnknownDependencyError,
    UnknownStepError,
)

from tests.conftest import make_plan, make_step


class TestBuildPlan:
    def test_prerequisites_come_first(self):
        plan = build_plan([
            make_step("scaffold", "apache2"),
            make_step("apache2", "git"),
            make_step("git"),
        ])
        assert plan.ids == ["git", "apache2", "scaffold"]

    def test_every_prerequisite_precedes_dependent(self):
        steps = [
            make_step("e", "c", "d"),
            make_step("d", "b"),
            make_step("c", "a", "b"),
            make_step("b"),
            make_step("a"),
        ]
        plan = build_plan(steps)
        index = {sid: i for i, sid in enumerate(plan.ids)}
        for step in plan:
            for dep in step.prerequisites:
                assert index[dep] < index[step.id]

    def test_independent_steps_keep_declaration_order(self):
        plan = build_plan([make_step("z"), make_step("m"), make_step("a")])
        assert plan.ids == ["z", "m", "a"]

    def test_order_is_deterministic(self):
        steps = [
            make_step("docker", "curl"),
            make_step("curl"),
            make_step("git"),
            make_step("docker-group", "docker"),
            make_step("vim"),
        ]
        first = build_plan(steps).ids
        for _ in range(5):
            assert build_plan(steps).ids == first
        # Min-heap on declaration index: a step unblocked early jumps ahead.
        assert first == ["curl", "docker", "git", "docker-group", "vim"]

    def test_empty(self):
        assert len(build_plan([])) == 0

    def test_name(self):
        assert build_plan([make_step("a")], name="ws").name == "ws"

    def test_duplicate_id(self):
        with pytest.raises(DuplicateStepError) as exc:
            build_plan([make_step("a"), make_step("a")])
        assert exc.value.step_id == "a"

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependencyError) as exc:
            build_plan([make_step("a", "ghost")])
        assert exc.value.step_id == "a"
        assert exc.value.missing == "ghost"
        assert "ghost" in str(exc.value)

    def test_self_cycle(self):
        with pytest.raises(CycleError) as exc:
            build_plan([make_step("a", "a")])
        assert exc.value.cycle == ["a", "a"]

    def test_two_step_cycle_names_both(self):
        with pytest.raises(CycleError) as exc:
            build_plan([make_step("a", "b"), make_step("b", "a")])
        cycle = exc.value.cycle
        assert set(cycle) == {"a", "b"}
        assert cycle[0] == cycle[-1]
        assert " -> " in str(exc.value)

    def test_cycle_reported_without_bystanders(self):
        with pytest.raises(CycleError) as exc:
            build_plan([
                make_step("root"),
                make_step("x", "root", "z"),
                make_step("y", "x"),
                make_step("z", "y"),
                make_step("leaf", "z"),
            ])
        assert set(exc.value.cycle) == {"x", "y", "z"}

    def test_plan_errors_share_base(self):
        for error in (DuplicateStepError("a"), UnknownDependencyError("a", "b"), CycleError(["a", "a"])):
            assert isinstance(error, PlanError)


class TestSelectSteps:
    def _plan(self):
        return make_plan(
            make_step("git"),
            make_step("curl"),
            make_step("docker", "curl"),
            make_step("docker-group", "docker"),
            make_step("vim"),
        )

    def test_pulls_in_prerequisites(self):
        selected = select_steps(self._plan(), ["docker-group"])
        assert selected.ids == ["curl", "docker", "docker-group"]

    def test_multiple(self):
        selected = select_steps(self._plan(), ["vim", "git"])
        assert selected.ids == ["git", "vim"]

    def test_keeps_name(self):
        plan = make_plan(make_step("a"), name="ws")
        assert select_steps(plan, ["a"]).name == "ws"

    def test_unknown(self):
        with pytest.raises(UnknownStepError):
            select_steps(self._plan(), ["nope"])


class TestReadiness:
    def _plan(self):
        return make_plan(make_step("a"), make_step("b", "a"), make_step("c"), make_step("d", "b"))

    def test_initially_ready(self):
        ready = ready_steps(self._plan(), succeeded=set(), finished=set(), running=set())
        assert [s.id for s in ready] == ["a", "c"]

    def test_running_excluded(self):
        ready = ready_steps(self._plan(), succeeded=set(), finished=set(), running={"a"})
        assert [s.id for s in ready] == ["c"]

    def test_dependent_ready_after_success(self):
        ready = ready_steps(self._plan(), succeeded={"a", "c"}, finished={"a", "c"}, running=set())
        assert [s.id for s in ready] == ["b"]

    def test_blocked(self):
        blocked = blocked_steps(self._plan(), failed={"a"}, finished={"a", "c"})
        assert [(s.id, dep) for s, dep in blocked] == [("b", "a")]
