"""
Async auto-sync loop.

Polls the journal every `poll_seconds` and runs an auto-sync for each user
who has it enabled, has stored credentials, and whose last sync is older
than their configured interval (or who has never synced). A failure for one
user is logged and does not stop the loop.

Usage:
    scheduler = AutoSyncScheduler(assistant, store, poll_seconds=60)
    await scheduler.start()  # Runs until stop()
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from loguru import logger

from trade_assistant.journal.schemas import User
from trade_assistant.journal.sqlite_store import JournalStore

if TYPE_CHECKING:
    from trade_assistant.main import TradeAssistant


class AutoSyncScheduler:
    """Runs due auto-syncs on a fixed polling cadence.

    Usage:
        scheduler = AutoSyncScheduler(assistant, store, poll_seconds=60)
        await scheduler.start()
    """

    def __init__(
        self,
        assistant: "TradeAssistant",
        store: JournalStore,
        poll_seconds: int = 60,
    ) -> None:
        self._assistant = assistant
        self._store = store
        self._poll_seconds = poll_seconds
        self._running = False

    # ── Public API ──────────────────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        logger.info("AutoSync: scheduler started (poll every {}s)", self._poll_seconds)
        await self._sync_loop()

    async def stop(self) -> None:
        logger.info("AutoSync: scheduler stopping")
        self._running = False

    @staticmethod
    def is_due(user: User, now: datetime) -> bool:
        """True when the user has never synced or their interval has elapsed."""
        if user.last_sync_at is None:
            return True
        return now - user.last_sync_at >= timedelta(minutes=user.auto_sync_interval)

    async def run_once(self, now: datetime | None = None) -> int:
        """Auto-sync every due user once.

        Returns:
            Number of users synced successfully.
        """
        now = now or datetime.now(timezone.utc)
        users = await asyncio.to_thread(self._store.list_auto_sync_users)
        synced = 0
        for user in users:
            if not self.is_due(user, now):
                continue
            try:
                report = await self._assistant.auto_sync(user.username, now=now)
                logger.info("AutoSync: {}: {}", user.username, report.message)
                synced += 1
            except Exception as e:
                logger.error("AutoSync: sync failed for {}: {}", user.username, e)
                await self._assistant.report_error(f"Auto-sync failed for {user.username}: {e}")
        return synced

    # ── Worker Loop ─────────────────────────────────────────────────────

    async def _sync_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("AutoSync loop error: {}", e)

            await asyncio.sleep(self._poll_seconds)
