"""
Tests for persistence — last-run report file and audit ledger.
"""

import json
from pathlib import Path

from provisioner.core.models.result import RunReport, RunStatus, StepOutcome, StepResult
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.state_file import default_state_path, load_report, save_report


def _report(status: RunStatus = RunStatus.PARTIAL_FAILURE) -> RunReport:
    return RunReport(
        run_id="run-1",
        plan_name="ws",
        status=status,
        results=(
            StepResult(step_id="git", outcome=StepOutcome.SATISFIED),
            StepResult(step_id="apache2", outcome=StepOutcome.APPLIED, stdout="done"),
            StepResult(step_id="site", outcome=StepOutcome.FAILED, error="exit 1", error_kind="ApplyError"),
            StepResult(step_id="after", outcome=StepOutcome.SKIPPED),
        ),
        started_at="2026-01-01T10:00:00+00:00",
        ended_at="2026-01-01T10:00:02.500000+00:00",
    )


class TestStateFile:
    def test_default_path(self, tmp_path: Path):
        assert default_state_path(tmp_path) == tmp_path / ".state" / "last_run.json"

    def test_save_and_load(self, tmp_path: Path):
        path = default_state_path(tmp_path)
        report = _report()
        save_report(report, path)
        assert path.is_file()
        assert load_report(path) == report
        # No temp files left behind
        assert [p.name for p in path.parent.iterdir()] == ["last_run.json"]

    def test_overwrite(self, tmp_path: Path):
        path = default_state_path(tmp_path)
        save_report(_report(), path)
        save_report(_report(RunStatus.SUCCESS), path)
        assert load_report(path).status == RunStatus.SUCCESS

    def test_missing(self, tmp_path: Path):
        assert load_report(tmp_path / "nope.json") is None

    def test_corrupt(self, tmp_path: Path):
        path = tmp_path / "last_run.json"
        path.write_text("{not json")
        assert load_report(path) is None

    def test_wrong_shape(self, tmp_path: Path):
        path = tmp_path / "last_run.json"
        path.write_text(json.dumps({"status": "exploded"}))
        assert load_report(path) is None


class TestAudit:
    def test_entry_from_report(self):
        entry = AuditEntry.from_report(_report())
        assert entry.run_id == "run-1"
        assert entry.status == "partial_failure"
        assert entry.steps_total == 4
        assert entry.steps_applied == 1
        assert entry.steps_failed == 1
        assert entry.steps_skipped == 1
        assert entry.duration_ms == 2500
        assert entry.errors == ["site: exit 1"]

    def test_fatal_entry(self):
        entry = AuditEntry.from_report(RunReport.fatal("cycle a -> a", run_id="run-2"))
        assert entry.status == "fatal"
        assert entry.errors == ["cycle a -> a"]

    def test_append_and_read(self, tmp_path: Path):
        writer = AuditWriter(plan_root=tmp_path)
        assert writer.path == tmp_path / ".state" / "audit.ndjson"
        for i in range(3):
            writer.write(AuditEntry(run_id=f"run-{i}", status="success"))

        entries = writer.read_all()
        assert [e.run_id for e in entries] == ["run-0", "run-1", "run-2"]
        assert [e.run_id for e in writer.read_recent(2)] == ["run-1", "run-2"]
        assert len(writer.path.read_text().splitlines()) == 3

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path)
        writer.write(AuditEntry(run_id="ok-1"))
        with path.open("a") as f:
            f.write("garbage\n\n")
        writer.write(AuditEntry(run_id="ok-2"))
        assert [e.run_id for e in writer.read_all()] == ["ok-1", "ok-2"]

    def test_read_missing(self, tmp_path: Path):
        assert AuditWriter(tmp_path / "none.ndjson").read_all() == []
