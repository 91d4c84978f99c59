"""
Tests for the report sink.
"""

import re
import threading

import pytest

from provisioner.core.engine.report import ReportSink, compute_status, generate_run_id
from provisioner.core.models.result import RunStatus, StepOutcome, StepResult

from tests.conftest import make_plan, make_step


def _result(step_id: str, outcome: StepOutcome = StepOutcome.APPLIED) -> StepResult:
    return StepResult(step_id=step_id, outcome=outcome)


class TestReportSink:
    def _plan(self):
        return make_plan(make_step("a"), make_step("b", "a"), make_step("c"), name="ws")

    def test_finalize_in_plan_order(self):
        sink = ReportSink(self._plan(), run_id="run-1")
        for sid in ("c", "a", "b"):
            sink.record(_result(sid))
        report = sink.finalize()
        assert [r.step_id for r in report.results] == ["a", "b", "c"]
        assert report.status == RunStatus.SUCCESS
        assert report.run_id == "run-1"
        assert report.plan_name == "ws"

    def test_duplicate_rejected(self):
        sink = ReportSink(self._plan())
        sink.record(_result("a"))
        with pytest.raises(ValueError, match="already recorded"):
            sink.record(_result("a", StepOutcome.FAILED))

    def test_unknown_rejected(self):
        with pytest.raises(ValueError, match="not part of this plan"):
            ReportSink(self._plan()).record(_result("zzz"))

    def test_sealed_after_finalize(self):
        sink = ReportSink(self._plan())
        sink.finalize()
        with pytest.raises(ValueError, match="finalized"):
            sink.record(_result("a"))

    def test_missing_results_are_a_failure(self):
        sink = ReportSink(self._plan())
        sink.record(_result("a"))
        assert sink.finalize().status == RunStatus.PARTIAL_FAILURE

    def test_concurrent_records(self):
        steps = [make_step(f"s{i}") for i in range(50)]
        sink = ReportSink(make_plan(*steps))
        threads = [threading.Thread(target=sink.record, args=(_result(s.id),)) for s in steps]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(sink.finalize().results) == 50

    def test_generated_run_id(self):
        sink = ReportSink(self._plan())
        assert re.fullmatch(r"run-\d{8}-\d{6}-[0-9a-f]{6}", sink.run_id)
        assert generate_run_id() != generate_run_id()


class TestComputeStatus:
    def test_success(self):
        results = (_result("a", StepOutcome.SATISFIED), _result("b", StepOutcome.WOULD_APPLY))
        assert compute_status(results) == RunStatus.SUCCESS

    @pytest.mark.parametrize("outcome", [StepOutcome.FAILED, StepOutcome.SKIPPED])
    def test_partial(self, outcome):
        assert compute_status((_result("a"), _result("b", outcome))) == RunStatus.PARTIAL_FAILURE
