# Submission stores: one async interface, four backings.
#  - MemoryStore: in-process list, used by tests and as a local fallback.
#  - SqlStore: SQLAlchemy table, SQLite locally or Supabase's Postgres by URL.
#  - SupabaseStore: supabase-py client against the same table.
#  - FirebaseStore: Realtime Database REST API.
# All backings keep the same "submissions" collection contract: filter on
# verified == true, order by timestamp, limit to N.

from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Type, TypeVar
import requests
from pydantic import ValidationError
from sqlalchemy import create_engine, Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import select
from .config import (
    DATABASE_URL, FIREBASE_AUTH, FIREBASE_DATABASE_URL, STORE_BACKEND, STORE_TIMEOUT,
    SUPABASE_KEY, SUPABASE_URL, WRITE_POLICY, WRITE_RATE_LIMIT,
)
from .errors import PhraseGateError, RemoteReadError, RemoteWriteError
from .models import SubmissionRecord, iso_utc
from .policy import PolicyGuard, WritePolicy

logger = logging.getLogger(__name__)

TABLE = "submissions"

T = TypeVar("T")


async def call_with_timeout(aw: Awaitable[T], timeout: Optional[float], error_cls: Type[PhraseGateError]) -> T:
    """Await a store call, turning an expired timeout into ``error_cls``."""
    try:
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError:
        raise error_cls(f"Request timed out after {timeout:g}s")


def check_payload(record: SubmissionRecord) -> None:
    # Mirrors the store-side validation rules so every backing rejects the same shapes.
    if not record.verified:
        raise RemoteWriteError("Malformed submission: verified must be true")
    if not record.phrase or record.phrase != record.phrase.strip():
        raise RemoteWriteError("Malformed submission: phrase is empty or padded")


def parse_rows(rows: Iterable[Any], parse: Callable[[Any], SubmissionRecord]) -> List[SubmissionRecord]:
    """Build records from raw rows, skipping any row that does not parse."""
    records = []
    for row in rows:
        try:
            records.append(parse(row))
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Skipping malformed submission row %r: %s", row, e)
    return records


class Store(ABC):
    @abstractmethod
    async def ping(self) -> None:
        """Raise if the backing cannot be reached."""

    @abstractmethod
    async def add(self, record: SubmissionRecord, identity: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def list_verified(self, limit: int, ascending: bool = True) -> List[SubmissionRecord]:
        ...

    def close(self) -> None:
        pass


class MemoryStore(Store):
    def __init__(self, delay: float = 0.0):
        self.records: List[SubmissionRecord] = []
        self.writes = 0
        self.reads = 0
        self.delay = delay
        self.fail_reads = False
        self.fail_writes = False
        self.fail_pings = 0

    async def ping(self) -> None:
        if self.fail_pings > 0:
            self.fail_pings -= 1
            raise ConnectionError("store not reachable")

    async def add(self, record: SubmissionRecord, identity: Optional[str] = None) -> None:
        self.writes += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_writes:
            raise RemoteWriteError("Permission denied")
        check_payload(record)
        self.records.append(record.model_copy())

    async def list_verified(self, limit: int, ascending: bool = True) -> List[SubmissionRecord]:
        self.reads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_reads:
            raise RemoteReadError("Network error")
        # sorted() is stable, so equal timestamps keep insertion order
        rows = sorted((r for r in self.records if r.verified), key=lambda r: r.submitted_at())
        if ascending:
            return [r.model_copy() for r in rows[:limit]]
        rows.reverse()
        return [r.model_copy() for r in rows[:limit]]


class ThreadedStore(Store):
    """Runs a blocking client off the event loop and maps its failures."""

    def _ping(self) -> None:
        raise NotImplementedError

    def _add(self, record: SubmissionRecord) -> None:
        raise NotImplementedError

    def _list(self, limit: int, ascending: bool) -> List[SubmissionRecord]:
        raise NotImplementedError

    async def ping(self) -> None:
        await asyncio.to_thread(self._ping)

    async def add(self, record: SubmissionRecord, identity: Optional[str] = None) -> None:
        check_payload(record)
        try:
            await asyncio.to_thread(self._add, record)
        except Exception as e:
            logger.error("Submission write failed: %s", e)
            raise RemoteWriteError(str(e) or e.__class__.__name__) from e

    async def list_verified(self, limit: int, ascending: bool = True) -> List[SubmissionRecord]:
        try:
            return await asyncio.to_thread(self._list, limit, ascending)
        except Exception as e:
            logger.warning("Submission read failed: %s", e)
            raise RemoteReadError(str(e) or e.__class__.__name__) from e


Base = declarative_base()

class Submission(Base):
    __tablename__ = TABLE
    id = Column(Integer, primary_key=True)
    username = Column(String(50), nullable=False)
    phrase = Column(String, nullable=False)
    # timestamptz on Postgres, matching the table supabase_sql() creates.
    timestamp = Column(DateTime(timezone=True), index=True, nullable=False)
    verified = Column(Boolean, default=True, nullable=False)


class SqlStore(ThreadedStore):
    def __init__(self, url: str = DATABASE_URL):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._engine = create_engine(url, echo=False, future=True, connect_args=connect_args)
        self._session = sessionmaker(bind=self._engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(self._engine)

    def _ping(self) -> None:
        with self._session() as s:
            s.execute(select(Submission.id).limit(1))

    def _add(self, record: SubmissionRecord) -> None:
        with self._session() as s:
            s.add(Submission(
                username=record.username,
                phrase=record.phrase,
                timestamp=record.submitted_at().astimezone(timezone.utc),
                verified=record.verified,
            ))
            s.commit()

    def _list(self, limit: int, ascending: bool) -> List[SubmissionRecord]:
        if ascending:
            order = (Submission.timestamp.asc(), Submission.id.asc())
        else:
            order = (Submission.timestamp.desc(), Submission.id.desc())
        q = select(Submission).where(Submission.verified.is_(True)).order_by(*order).limit(limit)
        with self._session() as s:
            rows = s.execute(q).scalars().all()
        return [
            SubmissionRecord(username=r.username, phrase=r.phrase, timestamp=iso_utc(r.timestamp), verified=r.verified)
            for r in rows
        ]

    def close(self) -> None:
        self._engine.dispose()


class SupabaseStore(ThreadedStore):
    def __init__(self, url: str = SUPABASE_URL, key: str = SUPABASE_KEY, client=None):
        if client is None:
            if not url or not key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")
            from supabase import create_client
            client = create_client(url, key)
        self.client = client

    def _ping(self) -> None:
        self.client.table(TABLE).select("id").limit(1).execute()

    def _add(self, record: SubmissionRecord) -> None:
        self.client.table(TABLE).insert(record.model_dump()).execute()

    def _list(self, limit: int, ascending: bool) -> List[SubmissionRecord]:
        res = (
            self.client.table(TABLE)
            .select("username, phrase, timestamp, verified")
            .eq("verified", True)
            .order("timestamp", desc=not ascending)
            .limit(limit)
            .execute()
        )
        return parse_rows(res.data, lambda row: SubmissionRecord(**row))


class FirebaseStore(ThreadedStore):
    """
    Firebase Realtime Database over its REST API.

    Records live under /submissions/<push id> with the handle stored as
    ``discord``. The database can only order on one child, so the verified
    filter is applied after the ordered, limited read.
    """

    def __init__(self, url: str = FIREBASE_DATABASE_URL, auth: str = FIREBASE_AUTH,
                 session: Optional[requests.Session] = None, timeout: float = STORE_TIMEOUT):
        if not url:
            raise RuntimeError("FIREBASE_DATABASE_URL must be set for the firebase backend")
        self.url = url.rstrip("/")
        self.auth = auth
        self.http = session or requests.Session()
        self.timeout = timeout

    def _params(self, **extra) -> dict:
        params = dict(extra)
        if self.auth:
            params["auth"] = self.auth
        return params

    def _ping(self) -> None:
        resp = self.http.get(f"{self.url}/{TABLE}.json", params=self._params(shallow="true"), timeout=self.timeout)
        resp.raise_for_status()

    def _add(self, record: SubmissionRecord) -> None:
        body = {
            "discord": record.username,
            "phrase": record.phrase,
            "timestamp": record.timestamp,
            "verified": record.verified,
        }
        resp = self.http.post(f"{self.url}/{TABLE}.json", json=body, params=self._params(), timeout=self.timeout)
        resp.raise_for_status()

    def _list(self, limit: int, ascending: bool) -> List[SubmissionRecord]:
        window = "limitToFirst" if ascending else "limitToLast"
        params = self._params(orderBy='"timestamp"', **{window: str(limit)})
        resp = self.http.get(f"{self.url}/{TABLE}.json", params=params, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json() or {}
        # Push ids sort chronologically, so they break timestamp ties.
        items = sorted(data.items(), key=lambda kv: (kv[1].get("timestamp", ""), kv[0]), reverse=not ascending)
        return parse_rows(
            (v for _, v in items if v.get("verified") is True),
            lambda v: SubmissionRecord(username=v["discord"], phrase=v["phrase"], timestamp=v["timestamp"]),
        )


class GuardedStore(Store):
    """Applies the configured write policy in front of another store."""

    def __init__(self, inner: Store, guard: PolicyGuard):
        self.inner = inner
        self.guard = guard

    async def ping(self) -> None:
        await self.inner.ping()

    async def add(self, record: SubmissionRecord, identity: Optional[str] = None) -> None:
        await self.guard.check_write(identity)
        await self.inner.add(record, identity)

    async def list_verified(self, limit: int, ascending: bool = True) -> List[SubmissionRecord]:
        return await self.inner.list_verified(limit, ascending)

    def close(self) -> None:
        self.inner.close()


def make_store(backend: str = STORE_BACKEND, policy: str = WRITE_POLICY) -> Store:
    backend = backend.strip().lower()
    # Hosted backings enforce the policy with their own rules.
    if backend == "supabase":
        return SupabaseStore()
    if backend == "firebase":
        return FirebaseStore()
    if backend == "memory":
        inner: Store = MemoryStore()
    elif backend == "sql":
        inner = SqlStore()
    else:
        raise ValueError(f"Unknown store backend: {backend}")
    return GuardedStore(inner, PolicyGuard(WritePolicy(policy), rate_limit=WRITE_RATE_LIMIT))
