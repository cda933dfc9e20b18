"""Smoke tests for the CLI."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from autowriter import cli
from autowriter.cli import Services, app
from autowriter.generation.engine import JobEngine
from autowriter.providers.manager import ProviderManager
from autowriter.publishers import create_publisher
from autowriter.runner import Runner
from autowriter.scheduling.scheduler import Scheduler
from autowriter.scheduling.store import ScheduleStore
from autowriter.scheduling.triggers import TriggerStore


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated CWD and HOME so no real config file is picked up."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("AUTOWRITER_STATE_DIR", raising=False)
    return tmp_path


@pytest.fixture
def state(workdir: Path) -> Path:
    return workdir / "state"


@pytest.fixture
def with_stub(monkeypatch: pytest.MonkeyPatch, stub):
    """Wire the CLI to the scripted provider instead of a real backend."""

    def build(config):
        state_dir = config.storage.path
        providers = ProviderManager(config, state_dir, providers={stub.name: stub}, active=stub.name)
        engine = JobEngine.from_config(config, create_publisher("markdown", config), providers=providers)
        scheduler = Scheduler(ScheduleStore(state_dir), TriggerStore(state_dir), engine)
        return Services(config, providers, engine, scheduler, Runner(engine, scheduler))

    monkeypatch.setattr(cli, "build_services", build)
    return stub


def _invoke(runner: CliRunner, state: Path, *args: str):
    return runner.invoke(app, ["--state-dir", str(state), *args])


def _only_id(directory: Path) -> str:
    (path,) = list(directory.glob("*.json"))
    return path.stem


class TestCLI:
    def test_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "job" in result.output
        assert "schedule" in result.output

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "autowriter" in result.output

    def test_templates(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "template", "list")
        assert result.exit_code == 0
        assert "blog_post" in result.output
        assert "listicle" in result.output


class TestTemplateCommands:
    def test_export_import_and_delete(self, runner: CliRunner, state: Path, workdir: Path) -> None:
        exported = workdir / "news.json"
        result = _invoke(runner, state, "template", "export", "news_article", "-o", str(exported))
        assert result.exit_code == 0, result.output
        assert json.loads(exported.read_text())["id"] == "news_article"

        imported = _invoke(runner, state, "template", "import", str(exported))
        assert imported.exit_code == 0, imported.output
        assert "news_article_imported" in imported.output

        shown = _invoke(runner, state, "template", "show", "news_article_imported")
        assert shown.exit_code == 0
        assert "News Article (Imported)" in shown.output

        assert _invoke(runner, state, "template", "delete", "news_article_imported").exit_code == 0
        assert _invoke(runner, state, "template", "delete", "news_article").exit_code == 1

    def test_import_rejects_garbage(self, runner: CliRunner, state: Path, workdir: Path) -> None:
        bad = workdir / "bad.json"
        bad.write_text(json.dumps({"name": "No sections"}))
        result = _invoke(runner, state, "template", "import", str(bad))
        assert result.exit_code == 1
        assert "Invalid template" in result.output


class TestJobCommands:
    def test_create_and_show(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "job", "create", "Green tea", "Black tea", "-i", "leaf")
        assert result.exit_code == 0, result.output
        assert "Created bulk job" in result.output

        job_id = _only_id(state / "jobs")
        shown = _invoke(runner, state, "job", "show", job_id, "--json")
        assert shown.exit_code == 0
        assert '"kind": "bulk"' in shown.output
        assert '"leaf"' in shown.output

    def test_list_empty(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "job", "list")
        assert result.exit_code == 0
        assert "No jobs found" in result.output

    def test_blank_topic_is_rejected(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "job", "create", "  ")
        assert result.exit_code == 1
        assert "must not be blank" in result.output
        assert not (state / "jobs").exists() or not list((state / "jobs").glob("*.json"))

    def test_bad_publish_date(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "job", "create", "Tea", "--publish-at", "soon")
        assert result.exit_code == 1
        assert "Invalid date" in result.output

    def test_advance_missing_job(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "job", "advance", "nope")
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_advance_and_cancel(self, runner: CliRunner, state: Path, with_stub) -> None:
        _invoke(runner, state, "job", "create", "Tea")
        job_id = _only_id(state / "jobs")

        advanced = _invoke(runner, state, "job", "advance", job_id)
        assert advanced.exit_code == 0, advanced.output
        assert "advanced" in advanced.output
        assert len(with_stub.calls) == 1

        cancelled = _invoke(runner, state, "job", "cancel", job_id)
        assert cancelled.exit_code == 0
        again = _invoke(runner, state, "job", "cancel", job_id)
        assert again.exit_code == 1

    def test_stats(self, runner: CliRunner, state: Path) -> None:
        _invoke(runner, state, "job", "create", "Tea")
        result = _invoke(runner, state, "job", "stats")
        assert result.exit_code == 0
        assert '"total_jobs": 1' in result.output


class TestScheduleCommands:
    def test_create_fire_and_delete(self, runner: CliRunner, state: Path, with_stub) -> None:
        created = _invoke(
            runner, state, "schedule", "create", "Daily tea", "--topic", "Green tea", "--tag", "tea"
        )
        assert created.exit_code == 0, created.output
        assert "Next run" in created.output

        schedule_id = _only_id(state / "schedules")
        fired = _invoke(runner, state, "schedule", "fire", schedule_id)
        assert fired.exit_code == 0, fired.output
        assert "created" in fired.output
        assert len(list((state / "jobs").glob("*.json"))) == 1

        deleted = _invoke(runner, state, "schedule", "delete", schedule_id)
        assert deleted.exit_code == 0
        assert not list((state / "schedules").glob("*.json"))

    def test_cancelled_scheduled_job_is_counted(self, runner: CliRunner, state: Path, with_stub) -> None:
        _invoke(runner, state, "schedule", "create", "Daily tea", "--topic", "Green tea")
        schedule_id = _only_id(state / "schedules")
        _invoke(runner, state, "schedule", "fire", schedule_id)
        job_id = _only_id(state / "jobs")

        cancelled = _invoke(runner, state, "job", "cancel", job_id)
        assert cancelled.exit_code == 0, cancelled.output
        stored = json.loads((state / "schedules" / f"{schedule_id}.json").read_text())
        assert (stored["success_count"], stored["failure_count"]) == (0, 1)

    def test_cron_needs_expression(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "schedule", "create", "Weekly", "-f", "custom_cron", "--topic", "x")
        assert result.exit_code == 1
        assert "cron expression" in result.output

    def test_toggle_unknown(self, runner: CliRunner, state: Path) -> None:
        result = _invoke(runner, state, "schedule", "toggle", "nope", "--off")
        assert result.exit_code == 1


class TestDriving:
    def test_tick_without_work(self, runner: CliRunner, state: Path, with_stub) -> None:
        result = _invoke(runner, state, "tick")
        assert result.exit_code == 0
        assert "No open jobs" in result.output

    def test_tick_advances_job(self, runner: CliRunner, state: Path, with_stub) -> None:
        _invoke(runner, state, "job", "create", "Tea")
        result = _invoke(runner, state, "tick")
        assert result.exit_code == 0
        assert "advanced" in result.output
