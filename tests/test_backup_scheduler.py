"""
Tests for BackupScheduler: cron validation, fire semantics and the timer loop.
"""

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from dump_agent.core.exceptions import ConfigError, DumpFailed, RetentionWarning
from dump_agent.models import Artifact, BackupResult, BackupStage
from dump_agent.services.backup.backup_operation import BackupOperation
from dump_agent.services.backup.retention_sweeper import RetentionSweeper
from dump_agent.services.scheduler.backup_scheduler import BackupScheduler
from dump_agent.services.telegram.telegram_client import TelegramClient


@pytest.fixture
def collaborators():
    operation = AsyncMock(spec=BackupOperation)
    operation.run.return_value = BackupResult(
        stage=BackupStage.COMPLETED,
        artifact=Artifact(path=Path("/tmp/x.sql.gz"), name="x.sql.gz", size_bytes=1),
    )
    sweeper = AsyncMock(spec=RetentionSweeper)
    sweeper.sweep.return_value = 0
    client = AsyncMock(spec=TelegramClient)
    return operation, sweeper, client


@pytest.fixture
def make_scheduler(make_settings, collaborators):
    operation, sweeper, client = collaborators

    def _make(cron_expr="0 2 * * *", **overrides):
        settings = make_settings(cron_expr=cron_expr, **overrides)
        return BackupScheduler(settings, operation, sweeper, client)

    return _make


class TestCronValidation:
    @pytest.mark.parametrize(
        "expr", ["not a cron", "61 * * * *", "* * * *", "0 0 * * * *", ""]
    )
    def test_invalid_expression_fails_fast(self, make_scheduler, expr):
        with pytest.raises(ConfigError):
            make_scheduler(cron_expr=expr)

    @pytest.mark.parametrize("expr", ["0 2 * * *", "*/15 * * * *", "30 1 * * 1-5", "@daily"])
    def test_valid_expressions(self, make_scheduler, expr):
        assert make_scheduler(cron_expr=expr).cron_expr == expr

    def test_next_fire_time_is_local_wall_clock(self, make_scheduler):
        scheduler = make_scheduler(cron_expr="0 2 * * *")

        assert scheduler.next_fire_time(datetime(2026, 1, 1, 1, 30)) == datetime(2026, 1, 1, 2, 0)
        assert scheduler.next_fire_time(datetime(2026, 1, 1, 2, 0)) == datetime(2026, 1, 2, 2, 0)


class TestFire:
    @pytest.mark.asyncio
    async def test_success_runs_bounded_backup_then_retention(self, make_scheduler, collaborators):
        operation, sweeper, client = collaborators
        scheduler = make_scheduler()

        result = await scheduler.fire()

        assert result.success
        operation.run.assert_awaited_once_with(timeout=7200.0)
        sweeper.sweep.assert_awaited_once()
        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_notifies_target_channel_once(self, make_scheduler, collaborators):
        operation, sweeper, client = collaborators
        operation.run.return_value = BackupResult(
            stage=BackupStage.DUMP, error=DumpFailed("mysqldump pipeline failed", 2, "Got error: 1045")
        )
        scheduler = make_scheduler()

        await scheduler.fire()

        client.send_text.assert_awaited_once()
        chat, text = client.send_text.call_args.args[:2]
        assert chat == "-1001"
        assert "Scheduled backup failed" in text
        assert "1045" in text
        sweeper.sweep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retention_warning_is_not_fatal(self, make_scheduler, collaborators):
        _, sweeper, _ = collaborators
        sweeper.sweep.side_effect = RetentionWarning("Cannot read backup directory")
        scheduler = make_scheduler()

        result = await scheduler.fire()

        assert result.success

    @pytest.mark.asyncio
    async def test_crash_is_reported_once_and_retention_still_runs(self, make_scheduler, collaborators):
        operation, sweeper, client = collaborators
        operation.run.side_effect = RuntimeError("Could not resolve name conflict")
        scheduler = make_scheduler()

        result = await scheduler.fire()

        assert result is None
        client.send_text.assert_awaited_once()
        chat, text = client.send_text.call_args.args[:2]
        assert chat == "-1001"
        assert "Scheduled backup failed" in text
        assert "Could not resolve name conflict" in text
        assert client.send_text.call_args.kwargs.get("parse_mode") is None
        sweeper.sweep.assert_awaited_once()


class TestSchedulerLoop:
    @pytest.mark.asyncio
    async def test_due_instant_fires_and_loop_keeps_running(self, make_scheduler):
        scheduler = make_scheduler()
        due = datetime.now() - timedelta(seconds=1)
        later = datetime.now() + timedelta(hours=1)

        with patch.object(scheduler, "next_fire_time", side_effect=[later, due, later, later, later]), \
                patch.object(scheduler, "fire", AsyncMock()) as fire:
            await scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()

        fire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_cancels_running_fire(self, make_scheduler, collaborators):
        operation, _, _ = collaborators

        async def hang(timeout=None):
            await asyncio.Event().wait()

        operation.run.side_effect = hang
        scheduler = make_scheduler()
        due = datetime.now() - timedelta(seconds=1)
        later = datetime.now() + timedelta(hours=1)

        with patch.object(scheduler, "next_fire_time", side_effect=[later, due, later, later, later]):
            await scheduler.start()
            await asyncio.sleep(0.05)
            operation.run.assert_awaited_once()
            await scheduler.stop()
