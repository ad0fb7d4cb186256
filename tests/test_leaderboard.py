import asyncio
from datetime import datetime, timedelta, timezone

from phrasegate.leaderboard import LeaderboardRefresher, build_entries, format_time_ago
from phrasegate.models import EMPTY_PLACEHOLDER, ERROR_PLACEHOLDER, SubmissionRecord
from phrasegate.phrase import SECRET_PHRASE
from phrasegate.readiness import StoreReadiness
from phrasegate.store import MemoryStore

PHRASE = " ".join(SECRET_PHRASE)


def make_refresher(store, **kwargs):
    readiness = StoreReadiness(store, attempts=kwargs.pop("attempts", 1), retry_delay=0)
    return LeaderboardRefresher(store, readiness, **kwargs)


def add(store, name, ts):
    store.records.append(SubmissionRecord(username=name, phrase=PHRASE, timestamp=ts))


def test_empty_store_renders_empty_placeholder():
    refresher = make_refresher(MemoryStore())
    view = asyncio.run(refresher.refresh())
    assert view.status == "empty"
    assert view.message == EMPTY_PLACEHOLDER
    assert view.entries == []


def test_list_is_ranked_in_store_order():
    store = MemoryStore()
    add(store, "late", "2026-01-01T11:00:00.000Z")
    add(store, "early", "2026-01-01T09:00:00.000Z")

    view = asyncio.run(make_refresher(store, ascending=True).refresh())
    assert view.status == "list"
    assert [(e.rank, e.username) for e in view.entries] == [(1, "early"), (2, "late")]

    view = asyncio.run(make_refresher(store, ascending=False).refresh())
    assert [(e.rank, e.username) for e in view.entries] == [(1, "late"), (2, "early")]


def test_limit_is_passed_to_store():
    store = MemoryStore()
    for i in range(5):
        add(store, f"p{i}", f"2026-01-01T09:0{i}:00.000Z")
    view = asyncio.run(make_refresher(store, limit=3).refresh())
    assert [e.username for e in view.entries] == ["p0", "p1", "p2"]


def test_read_failure_renders_error_then_recovers():
    store = MemoryStore()
    add(store, "player", "2026-01-01T09:00:00.000Z")
    refresher = make_refresher(store)

    async def run():
        first = await refresher.refresh()
        assert first.status == "list"
        store.fail_reads = True
        failed = await refresher.refresh()
        assert failed.status == "error"
        assert failed.message == ERROR_PLACEHOLDER
        assert failed.entries == []
        # the last good read stays in memory but is not rendered
        assert [r.username for r in refresher.last_snapshot] == ["player"]
        store.fail_reads = False
        return await refresher.refresh()

    view = asyncio.run(run())
    assert view.status == "list"
    assert view.entries[0].username == "player"


def test_read_timeout_renders_error():
    store = MemoryStore(delay=0.5)
    view = asyncio.run(make_refresher(store, timeout=0.01).refresh())
    assert view.status == "error"


def test_poller_refreshes_on_interval():
    store = MemoryStore()
    refresher = make_refresher(store, interval=0.01)

    async def run():
        refresher.start()
        await refresher.readiness.initialize()
        await asyncio.sleep(0.1)
        await refresher.stop()

    asyncio.run(run())
    assert store.reads >= 3
    assert refresher.view.status == "empty"
    assert not refresher.running


def test_poller_shows_unavailable_when_store_never_ready():
    store = MemoryStore()
    store.fail_pings = 5
    refresher = make_refresher(store, attempts=2, interval=0.01)

    async def run():
        refresher.start()
        await refresher.readiness.initialize()
        await asyncio.sleep(0.02)
        assert refresher.view.status == "unavailable"
        assert not refresher.running
        assert store.reads == 0
        store.fail_pings = 0
        await refresher.retry_initialization()
        await asyncio.sleep(0.02)
        status = refresher.view.status
        await refresher.stop()
        return status

    assert asyncio.run(run()) == "empty"


def test_refresh_later_runs_once():
    store = MemoryStore()
    refresher = make_refresher(store)

    async def run():
        await refresher.refresh_later(0.01)

    asyncio.run(run())
    assert store.reads == 1
    assert refresher.view.status == "empty"


def test_format_time_ago():
    now = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)
    assert format_time_ago(now - timedelta(seconds=30), now) == "Just now"
    assert format_time_ago(now - timedelta(minutes=5), now) == "5m ago"
    assert format_time_ago(now - timedelta(hours=3), now) == "3h ago"
    assert format_time_ago(now - timedelta(days=2), now) == "2d ago"


def test_build_entries_previews_phrase():
    now = datetime(2026, 1, 1, 9, 10, tzinfo=timezone.utc)
    rec = SubmissionRecord(username="player#1234", phrase=PHRASE, timestamp="2026-01-01T09:00:00.000Z")
    [entry] = build_entries([rec], now)
    assert entry.rank == 1
    assert entry.phrase_preview == "steel hamster casual..."
    assert entry.time_ago == "10m ago"
