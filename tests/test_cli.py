"""Tests for fieldcron.cli."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

from fieldcron.cli.commands import app
from fieldcron.core.config import Config
from fieldcron.core.cron.types import CronCreate, RunState, TaskRunResult
from fieldcron.storage.store import SQLiteStore

runner = CliRunner()

_PATCH_CONFIG = "fieldcron.core.config.loader.load_config"
_PATCH_BUILD = "fieldcron.cli.commands._build_dispatcher"


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.output
    assert "tick" in result.output
    assert "crons" in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "fieldcron v" in result.output


def test_tick_prints_results(monkeypatch):
    monkeypatch.setenv("COLUMNS", "200")
    dispatcher = MagicMock()
    dispatcher.tick = AsyncMock(return_value=[
        TaskRunResult(cron_id=1, state=RunState.COMPLETED, fetched=3, submitted=[11, 12]),
        TaskRunResult(cron_id=2, state=RunState.FAILED, error="not connected"),
    ])
    with (
        patch(_PATCH_CONFIG, return_value=Config()),
        patch(_PATCH_BUILD, return_value=dispatcher),
    ):
        result = runner.invoke(app, ["tick"])

    assert result.exit_code == 0
    assert "11, 12" in result.output
    assert "completed" in result.output
    assert "failed" in result.output
    dispatcher.tick.assert_awaited_once()


def test_tick_single_cron(monkeypatch):
    monkeypatch.setenv("COLUMNS", "200")
    dispatcher = MagicMock()
    dispatcher.run_task = AsyncMock(
        return_value=TaskRunResult(cron_id=7, state=RunState.SKIPPED, reason="busy")
    )
    with (
        patch(_PATCH_CONFIG, return_value=Config()),
        patch(_PATCH_BUILD, return_value=dispatcher),
    ):
        result = runner.invoke(app, ["tick", "--cron", "7"])

    assert result.exit_code == 0
    dispatcher.run_task.assert_awaited_once_with(7)
    assert "busy" in result.output


def test_tick_no_crons():
    dispatcher = MagicMock()
    dispatcher.tick = AsyncMock(return_value=[])
    with (
        patch(_PATCH_CONFIG, return_value=Config()),
        patch(_PATCH_BUILD, return_value=dispatcher),
    ):
        result = runner.invoke(app, ["tick"])
    assert "No active crons" in result.output


def test_crons_lists_table(tmp_path, monkeypatch):
    monkeypatch.setenv("COLUMNS", "200")
    config = Config(database={"path": str(tmp_path / "test.db")})
    SQLiteStore(config.database.path).add_cron("u1", CronCreate(
        center_zip="60601",
        driving_radius=25,
        cron_start_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        cron_end_at=datetime(2026, 12, 31, tzinfo=timezone.utc),
        working_window_start_at="08:00",
        working_window_end_at="17:00",
        types_of_work_order=[3],
    ))
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["crons"])

    assert result.exit_code == 0
    assert "60601" in result.output
    assert "08:00-17:00" in result.output


def test_crons_empty(tmp_path):
    config = Config(database={"path": str(tmp_path / "test.db")})
    with patch(_PATCH_CONFIG, return_value=config):
        result = runner.invoke(app, ["crons", "--user", "nobody"])
    assert "No crons" in result.output
