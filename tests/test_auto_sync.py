"""
Tests for trade_assistant/scheduler/auto_sync.py.

The assistant is an AsyncMock; the journal is a real JournalStore, so the
due-user selection runs against stored settings.
"""

import unittest.mock
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from trade_assistant.journal.schemas import User
from trade_assistant.journal.sqlite_store import JournalStore
from trade_assistant.scheduler.auto_sync import AutoSyncScheduler

NOW = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path: object) -> JournalStore:
    s = JournalStore(db_path=f"{tmp_path}/test_auto_sync.db")
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture
def assistant() -> AsyncMock:
    assistant = AsyncMock()
    assistant.auto_sync = AsyncMock(return_value=MagicMock(message="Synced 0 new trades"))
    return assistant


@pytest.fixture
def scheduler(assistant: AsyncMock, store: JournalStore) -> AutoSyncScheduler:
    return AutoSyncScheduler(assistant, store, poll_seconds=60)


def _make_user(
    store: JournalStore,
    username: str,
    enabled: bool = True,
    interval: int = 15,
    last_sync_at: datetime | None = None,
    credentials: bool = True,
) -> User:
    user = store.get_or_create_user(username)
    if credentials:
        store.update_credentials(user.id, "enc-key", "enc-secret")  # type: ignore[arg-type]
    store.update_auto_sync_settings(user.id, enabled=enabled, interval=interval)
    if last_sync_at is not None:
        store.mark_synced(user.id, last_sync_at)  # type: ignore[arg-type]
    return store.get_user(user.id)  # type: ignore[arg-type, return-value]


async def _run_loop_once(scheduler: AutoSyncScheduler) -> None:
    """Run the sync loop for exactly one iteration then stop."""

    async def fake_sleep(seconds: float) -> None:
        scheduler._running = False

    with unittest.mock.patch("asyncio.sleep", fake_sleep):
        scheduler._running = True
        await scheduler._sync_loop()


# ── is_due ──────────────────────────────────────────────────────────────────


class TestIsDue:
    def test_never_synced(self) -> None:
        assert AutoSyncScheduler.is_due(User(username="a"), NOW) is True

    def test_interval_elapsed(self) -> None:
        user = User(username="a", auto_sync_interval=15, last_sync_at=NOW - timedelta(minutes=15))
        assert AutoSyncScheduler.is_due(user, NOW) is True

    def test_interval_not_elapsed(self) -> None:
        user = User(username="a", auto_sync_interval=15, last_sync_at=NOW - timedelta(minutes=14))
        assert AutoSyncScheduler.is_due(user, NOW) is False


# ── run_once ────────────────────────────────────────────────────────────────


class TestRunOnce:
    async def test_syncs_only_due_users(
        self, scheduler: AutoSyncScheduler, assistant: AsyncMock, store: JournalStore
    ) -> None:
        _make_user(store, "never")
        _make_user(store, "stale", last_sync_at=NOW - timedelta(minutes=30))
        _make_user(store, "fresh", last_sync_at=NOW - timedelta(minutes=5))
        _make_user(store, "disabled", enabled=False)
        _make_user(store, "no-keys", credentials=False)

        synced = await scheduler.run_once(now=NOW)

        assert synced == 2
        called = [c.args[0] for c in assistant.auto_sync.await_args_list]
        assert called == ["never", "stale"]
        assert assistant.auto_sync.await_args_list[0].kwargs == {"now": NOW}

    async def test_failure_for_one_user_continues(
        self, scheduler: AutoSyncScheduler, assistant: AsyncMock, store: JournalStore
    ) -> None:
        _make_user(store, "broken")
        _make_user(store, "healthy")
        assistant.auto_sync.side_effect = [
            RuntimeError("Invalid API credentials"),
            MagicMock(message="ok"),
        ]

        synced = await scheduler.run_once(now=NOW)

        assert synced == 1
        assert assistant.auto_sync.await_count == 2
        assistant.report_error.assert_awaited_once_with(
            "Auto-sync failed for broken: Invalid API credentials"
        )


# ── Loop Lifecycle ──────────────────────────────────────────────────────────


class TestLoop:
    async def test_loop_runs_one_pass(
        self, scheduler: AutoSyncScheduler, assistant: AsyncMock, store: JournalStore
    ) -> None:
        _make_user(store, "demo")
        await _run_loop_once(scheduler)
        assistant.auto_sync.assert_awaited_once()

    async def test_loop_survives_run_once_error(self, scheduler: AutoSyncScheduler) -> None:
        scheduler.run_once = AsyncMock(side_effect=RuntimeError("db locked"))
        await _run_loop_once(scheduler)
        scheduler.run_once.assert_awaited_once()

    async def test_stop_clears_running(self, scheduler: AutoSyncScheduler) -> None:
        scheduler._running = True
        await scheduler.stop()
        assert scheduler._running is False
