"""
Tests for CLI commands — run, check, plan, history and global options.
"""

import json
from pathlib import Path

from click.testing import CliRunner

from provisioner.main import cli

MOCK_PLAN = """
    name: workstation
    steps:
      - id: git
        classification: package
        probe: {name: git}
      - id: apache2
        classification: service
        prerequisites: [git]
        probe: {name: apache2}
      - id: site
        classification: file
        prerequisites: [apache2]
        probe: {path: /var/www/html/index.html, content: "hello"}
      - id: vim
        classification: package
        probe: {name: vim}
"""


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Provisioner" in result.output
        for command in ("run", "check", "plan", "history"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestRunCommand:
    def test_success(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock"])
        assert result.exit_code == 0, result.output
        assert "success" in result.stdout
        assert "apache2" in result.stdout

    def test_json(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock", "--json", "--no-save"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["exit_code"] == 0
        assert [r["step_id"] for r in data["results"]] == ["git", "apache2", "site", "vim"]
        assert data["counts"]["applied"] == 4

    def test_partial_failure_exit_code(self, plan_file):
        path = plan_file("""
            steps:
              - {id: broken, classification: command, probe: {invalid: true}}
              - {id: after, classification: command, prerequisites: [broken]}
              - {id: fine, classification: command}
        """)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock", "--no-save"])
        assert result.exit_code == 1
        assert "broken" in result.stderr
        assert "StepDefinitionError" in result.stderr
        assert "skipped" in result.stdout

    def test_cycle_is_fatal(self, plan_file):
        path = plan_file("""
            steps:
              - {id: a, classification: command, prerequisites: [b]}
              - {id: b, classification: command, prerequisites: [a]}
        """)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock"])
        assert result.exit_code == 2
        assert "cycle" in result.stderr.lower()
        state = path.parent / ".state"
        assert not (state / "last_run.json").exists()
        entry = json.loads((state / "audit.ndjson").read_text().splitlines()[0])
        assert entry["status"] == "fatal"
        assert "cycle" in entry["errors"][0].lower()

    def test_missing_plan_is_fatal(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["run", "--plan", str(tmp_path / "nope.yml"), "--mock"])
        assert result.exit_code == 2

    def test_unknown_only_is_fatal(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock", "--only", "emacs"])
        assert result.exit_code == 2
        assert "emacs" in result.stderr

    def test_only_pulls_prerequisites(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(
            cli, ["run", "--plan", str(path), "--mock", "--json", "--no-save", "--only", "apache2"],
        )
        data = json.loads(result.stdout)
        assert [r["step_id"] for r in data["results"]] == ["git", "apache2"]

    def test_dry_run(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock", "--dry-run", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["dry_run"] is True
        assert data["counts"]["would_apply"] == 4
        assert not (path.parent / ".state").exists()

    def test_invalid_concurrency(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["run", "--plan", str(path), "--concurrency", "0"])
        assert result.exit_code == 2  # click usage error

    def test_saves_state_and_audit(self, plan_file):
        path = plan_file(MOCK_PLAN)
        CliRunner().invoke(cli, ["run", "--plan", str(path), "--mock"])
        state = path.parent / ".state"
        assert (state / "last_run.json").is_file()
        assert len((state / "audit.ndjson").read_text().splitlines()) == 1

    def test_real_commands_are_idempotent(self, plan_file, tmp_path: Path):
        marker = tmp_path / "marker"
        path = plan_file(f"""
            steps:
              - id: touch
                classification: command
                probe: {{command: "test -f {marker}"}}
                apply: {{command: "touch {marker}"}}
              - id: config
                classification: file
                prerequisites: [touch]
                probe: {{path: "{tmp_path / 'conf' / 'app.conf'}", content: "x=1\\n", mode: "0600"}}
        """)
        runner = CliRunner()
        first = runner.invoke(cli, ["run", "--plan", str(path), "--json", "--no-save"])
        assert first.exit_code == 0, first.output
        assert json.loads(first.stdout)["counts"]["applied"] == 2
        assert marker.exists()
        assert (tmp_path / "conf" / "app.conf").read_text() == "x=1\n"

        second = runner.invoke(cli, ["run", "--plan", str(path), "--json", "--no-save"])
        assert second.exit_code == 0
        assert json.loads(second.stdout)["counts"]["satisfied"] == 2


class TestCheckCommand:
    def test_check_never_applies(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["check", "--plan", str(path), "--mock"])
        assert result.exit_code == 0
        assert "Dry run" in result.stdout
        assert not (path.parent / ".state").exists()


class TestPlanCommand:
    def test_lists_in_order(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["plan", "--plan", str(path), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [s["id"] for s in data["steps"]] == ["git", "apache2", "site", "vim"]
        assert data["steps"][0]["tokens"] == ["package-db"]

    def test_human_output(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["plan", "--plan", str(path)])
        assert result.exit_code == 0
        assert "workstation" in result.stdout
        assert "after: git" in result.stdout

    def test_invalid(self, plan_file):
        path = plan_file("steps:\n  - {id: a, classification: command, prerequisites: [ghost]}\n")
        result = CliRunner().invoke(cli, ["plan", "--plan", str(path)])
        assert result.exit_code == 2
        assert "ghost" in result.stderr


class TestHistoryCommand:
    def test_empty(self, plan_file):
        path = plan_file(MOCK_PLAN)
        result = CliRunner().invoke(cli, ["history", "--plan", str(path)])
        assert result.exit_code == 0
        assert "No runs" in result.stdout

    def test_after_runs(self, plan_file):
        path = plan_file(MOCK_PLAN)
        runner = CliRunner()
        runner.invoke(cli, ["run", "--plan", str(path), "--mock"])
        runner.invoke(cli, ["run", "--plan", str(path), "--mock"])

        result = runner.invoke(cli, ["history", "--plan", str(path), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert len(data["runs"]) == 2
        assert data["last_run"]["status"] == "success"
