"""
Tests for core domain models — Step, Plan, ProbeResult, StepResult, RunReport.
"""

import pytest
from pydantic import ValidationError

from provisioner.core.models.plan import PlanDocument
from provisioner.core.models.probe import ProbeResult, ProbeStatus
from provisioner.core.models.result import (
    RunReport,
    RunStatus,
    StepOutcome,
    StepResult,
)
from provisioner.core.models.step import PACKAGE_DB_TOKEN, Classification, Step

from tests.conftest import make_plan, make_step


class TestStep:
    def test_minimal(self):
        step = Step.model_validate({"id": "git", "classification": "package"})
        assert step.id == "git"
        assert step.label == "git"
        assert step.classification == Classification.PACKAGE
        assert step.prerequisites == ()
        assert step.idempotent is True

    def test_aliases(self):
        step = Step.model_validate({
            "id": "apache2",
            "type": "service",
            "requires": ["git"],
            "probe_spec": {"name": "apache2"},
            "apply_spec": {},
        })
        assert step.classification == Classification.SERVICE
        assert step.prerequisites == ("git",)
        assert step.probe == {"name": "apache2"}

    def test_single_prerequisite_string(self):
        step = make_step("b", prerequisites="a")
        assert step.prerequisites == ("a",)

    def test_prerequisites_deduplicated(self):
        step = make_step("c", "a", "b", "a")
        assert step.prerequisites == ("a", "b")

    def test_id_stripped(self):
        assert make_step("  spaced  ").id == "spaced"

    def test_blank_id_rejected(self):
        with pytest.raises(ValidationError):
            make_step("   ")

    def test_comma_in_id_rejected(self):
        with pytest.raises(ValidationError):
            make_step("a,b")

    def test_unknown_classification_rejected(self):
        with pytest.raises(ValidationError):
            Step.model_validate({"id": "x", "classification": "kernel-module"})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            Step.model_validate({"id": "x", "classification": "command", "retries": 3})

    def test_not_idempotent_rejected(self):
        with pytest.raises(ValidationError):
            Step.model_validate({"id": "x", "classification": "command", "idempotent": False})

    def test_frozen(self):
        step = make_step("a")
        with pytest.raises(ValidationError):
            step.id = "b"

    def test_package_token_and_transient(self):
        step = Step.model_validate({"id": "git", "classification": "package"})
        assert step.tokens == (PACKAGE_DB_TOKEN,)
        assert step.transient is True

    def test_package_transient_can_be_disabled(self):
        step = Step.model_validate({"id": "git", "classification": "package", "transient": False})
        assert step.transient is False

    def test_command_has_no_token(self):
        step = make_step("a")
        assert step.tokens == ()
        assert step.transient is False

    def test_explicit_resource(self):
        step = make_step("a", resource="docker-daemon")
        assert step.tokens == ("docker-daemon",)

    def test_package_resource_adds_to_package_db(self):
        step = make_step("snap-core", classification="package", resource="snapd")
        assert step.tokens == (PACKAGE_DB_TOKEN, "snapd")

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_step("a", apply_timeout=0)


class TestPlan:
    def test_lookup(self):
        plan = make_plan(make_step("a"), make_step("b", "a"))
        assert "a" in plan
        assert "zzz" not in plan
        assert len(plan) == 2
        assert plan.ids == ["a", "b"]
        assert plan.get("b").prerequisites == ("a",)
        assert plan.get("zzz") is None

    def test_dependents(self):
        plan = make_plan(make_step("a"), make_step("b", "a"), make_step("c", "a"), make_step("d"))
        assert [s.id for s in plan.dependents("a")] == ["b", "c"]

    def test_to_dict(self):
        plan = make_plan(make_step("a"), name="ws")
        d = plan.to_dict()
        assert d["name"] == "ws"
        assert d["total"] == 1
        assert d["steps"][0]["id"] == "a"
        assert d["steps"][0]["classification"] == "command"

    def test_document_defaults(self):
        doc = PlanDocument.model_validate({"steps": [{"id": "a", "classification": "command"}]})
        assert doc.version == 1
        assert doc.settings == {}
        assert doc.steps[0].id == "a"


class TestProbeResult:
    def test_converged(self):
        assert ProbeResult.satisfied().converged
        assert ProbeResult.requires_relogin().converged
        assert not ProbeResult.unsatisfied().converged

    def test_data(self):
        result = ProbeResult.unsatisfied("missing", missing=["git"])
        assert result.status == ProbeStatus.UNSATISFIED
        assert result.detail == "missing"
        assert result.data == {"missing": ["git"]}


class TestRunReport:
    def _results(self):
        return (
            StepResult(step_id="a", outcome=StepOutcome.SATISFIED),
            StepResult(step_id="b", outcome=StepOutcome.APPLIED),
            StepResult(step_id="c", outcome=StepOutcome.FAILED, error="boom", error_kind="ApplyError"),
            StepResult(step_id="d", outcome=StepOutcome.SKIPPED),
        )

    def test_exit_codes(self):
        assert RunReport(status=RunStatus.SUCCESS).exit_code == 0
        assert RunReport(status=RunStatus.PARTIAL_FAILURE).exit_code == 1
        assert RunReport(status=RunStatus.FATAL).exit_code == 2

    def test_fatal(self):
        report = RunReport.fatal(ValueError("bad plan"), run_id="run-1")
        assert report.status == RunStatus.FATAL
        assert report.fatal_error == "bad plan"
        assert report.results == ()

    def test_counts_and_failures(self):
        report = RunReport(status=RunStatus.PARTIAL_FAILURE, results=self._results())
        assert report.count(StepOutcome.APPLIED) == 1
        assert [r.step_id for r in report.failures] == ["c"]
        assert report.get("d").outcome == StepOutcome.SKIPPED
        assert report.get("zzz") is None

    def test_to_dict(self):
        report = RunReport(run_id="run-1", plan_name="ws", status=RunStatus.PARTIAL_FAILURE,
                           results=self._results())
        d = report.to_dict()
        assert d["status"] == "partial_failure"
        assert d["exit_code"] == 1
        assert d["counts"]["failed"] == 1
        assert d["counts"]["would_apply"] == 0
        assert d["results"][2]["error"] == "boom"

    def test_round_trip_through_json(self):
        report = RunReport(status=RunStatus.SUCCESS, results=self._results()[:2])
        restored = RunReport.model_validate_json(report.model_dump_json())
        assert restored == report

    def test_outcome_ok(self):
        assert StepOutcome.WOULD_APPLY.ok
        assert not StepOutcome.SKIPPED.ok
        assert StepResult(step_id="x", outcome=StepOutcome.FAILED, error_kind="StepCancelledError").cancelled
