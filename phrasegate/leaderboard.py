# Leaderboard refresher: polls the store and keeps the rendered list.
#
# The view is replaced wholesale on every read. A failed read shows the error
# placeholder; the next successful poll brings the list back. Rank is the order
# the store returned, nothing is re-sorted here.

from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Set
from .config import LEADERBOARD_ASCENDING, LEADERBOARD_INTERVAL, LEADERBOARD_LIMIT, STORE_TIMEOUT
from .errors import InitializationError, PhraseGateError, RemoteReadError
from .models import (
    EMPTY_PLACEHOLDER, ERROR_PLACEHOLDER, LeaderboardEntry, LeaderboardView, SubmissionRecord,
)
from .phrase import phrase_preview
from .readiness import StoreReadiness
from .store import Store, call_with_timeout

logger = logging.getLogger(__name__)


def format_time_ago(when: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    seconds = int((now - when).total_seconds())
    if seconds < 60:
        return "Just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def build_entries(records: List[SubmissionRecord], now: Optional[datetime] = None) -> List[LeaderboardEntry]:
    now = now or datetime.now(timezone.utc)
    return [
        LeaderboardEntry(
            rank=i,
            username=r.username,
            phrase=r.phrase,
            phrase_preview=phrase_preview(r.phrase),
            timestamp=r.timestamp,
            time_ago=format_time_ago(r.submitted_at(), now),
        )
        for i, r in enumerate(records, start=1)
    ]


class LeaderboardRefresher:
    def __init__(self, store: Store, readiness: StoreReadiness, limit: int = LEADERBOARD_LIMIT,
                 interval: float = LEADERBOARD_INTERVAL, ascending: bool = LEADERBOARD_ASCENDING,
                 timeout: Optional[float] = STORE_TIMEOUT):
        self.store = store
        self.readiness = readiness
        self.limit = limit
        self.interval = interval
        self.ascending = ascending
        self.timeout = timeout
        self.view = LeaderboardView()
        # Last good read, kept in memory only; never rendered after an error.
        self.last_snapshot: Optional[List[SubmissionRecord]] = None
        self._poller: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    async def refresh(self) -> LeaderboardView:
        try:
            records = await call_with_timeout(
                self.store.list_verified(self.limit, self.ascending), self.timeout, RemoteReadError
            )
        except PhraseGateError as e:
            logger.warning("Leaderboard refresh failed: %s", e)
            self.view = LeaderboardView(status="error", message=ERROR_PLACEHOLDER)
            return self.view

        self.last_snapshot = records
        if not records:
            self.view = LeaderboardView(status="empty", message=EMPTY_PLACEHOLDER)
        else:
            self.view = LeaderboardView(status="list", entries=build_entries(records), message=None)
        return self.view

    async def _run(self) -> None:
        try:
            await self.readiness.wait()
        except InitializationError as e:
            self.view = LeaderboardView(status="unavailable", message=e.user_message)
            return
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._run())

    @property
    def running(self) -> bool:
        return self._poller is not None and not self._poller.done()

    def refresh_later(self, delay: float) -> asyncio.Task:
        """Schedule one refresh outside the poll cycle."""
        async def _later():
            await asyncio.sleep(delay)
            await self.refresh()

        task = asyncio.create_task(_later())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def retry_initialization(self) -> None:
        """User-triggered retry after the store never became ready."""
        if self.running:
            return
        self.readiness.reset()
        self.view = LeaderboardView()
        self.start()
        await self.readiness.initialize()

    async def stop(self) -> None:
        tasks = list(self._pending)
        if self._poller is not None:
            tasks.append(self._poller)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poller = None
        self._pending.clear()
