# ruff: noqa: INP001, S101

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from webhook_intake import cli
from webhook_intake.core.config import Settings
from webhook_intake.db.session import Database
from webhook_intake.services.webhooks.queue import QueuedEventStore


async def _prepare(database_url: str, events: int) -> None:
    database = Database.from_url(database_url)
    try:
        await database.create_all()
        store = QueuedEventStore(database.session_maker)
        for index in range(events):
            await store.enqueue("app/uninstalled", "demo.myshopify.com", f'{{"id": {index}}}'.encode())
    finally:
        await database.dispose()


def _config(database_url: str, **overrides: Any) -> Settings:
    return Settings(database_url=database_url, webhook_item_delay_seconds=0, **overrides)


def test_drain_prints_summary_and_exits_zero(database_url: str, capsys: pytest.CaptureFixture[str]) -> None:
    asyncio.run(_prepare(database_url, 2))

    code = cli.main(["drain"], config=_config(database_url))

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary == {"failed": 0, "processed": 2, "skipped": 0, "succeeded": 2}


def test_drain_exits_one_on_storage_error(database_url: str, capsys: pytest.CaptureFixture[str]) -> None:
    # no tables created
    code = cli.main(["drain"], config=_config(database_url))

    assert code == 1
    assert "ERROR:" in capsys.readouterr().err


def test_purge_and_release_stale_report_counts(
    database_url: str,
    capsys: pytest.CaptureFixture[str],
) -> None:
    asyncio.run(_prepare(database_url, 0))
    config = _config(database_url)

    assert cli.main(["purge", "--older-than-days", "1"], config=config) == 0
    assert json.loads(capsys.readouterr().out) == {"deleted": 0}

    assert cli.main(["release-stale", "--older-than-seconds", "60"], config=config) == 0
    assert json.loads(capsys.readouterr().out) == {"released": 0}


def test_schedule_delegates_to_bootstrap(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    database_url: str,
) -> None:
    calls: list[tuple[Any, ...]] = []

    def _bootstrap(config: Settings, interval: int | None, *, include_purge: bool) -> None:
        calls.append((config.webhook_drain_schedule_id, interval, include_purge))

    monkeypatch.setattr(cli, "bootstrap_queue_drain_schedule", _bootstrap)

    code = cli.main(["schedule", "--interval", "30", "--no-purge"], config=_config(database_url))

    assert code == 0
    assert calls == [("webhook-queue-drain", 30, False)]
    assert json.loads(capsys.readouterr().out) == {"scheduled": "webhook-queue-drain"}


def test_unknown_command_is_rejected() -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["explode"])
    assert exc.value.code == 2


def test_rq_job_entry_points_use_process_settings(
    monkeypatch: pytest.MonkeyPatch,
    database_url: str,
) -> None:
    from webhook_intake.services.webhooks import jobs

    asyncio.run(_prepare(database_url, 1))
    monkeypatch.setattr(jobs, "settings", _config(database_url))

    assert jobs.run_queue_drain_job() == {"failed": 0, "processed": 1, "skipped": 0, "succeeded": 1}
    assert jobs.run_queue_purge_job() == 0
