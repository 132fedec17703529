"""Durable storage for URL records, aliases and persisted click counts.

``SqlDatastore`` is the only component that talks to PostgreSQL. Each call
opens its own short-lived session and first takes a slot from a bounded
bulkhead, so origin queries from the resolver and from analytics flushes can
never occupy more than ``DATASTORE_MAX_CONCURRENCY`` connections, however many
redirect requests are in flight.

Query Map
=========
::
    find_by_id              SELECT short_url WHERE id = ?
    find_by_hash_and_url    SELECT short_url WHERE long_url_hash = ? AND long_url = ?
    find_by_alias           SELECT short_url JOIN custom_url_code WHERE code = ?
    alias_exists            SELECT 1 FROM custom_url_code WHERE code = ?
    save_url                INSERT short_url [+ INSERT custom_url_code]
    upsert_click_count      INSERT ... ON CONFLICT (time, url_id) DO UPDATE count = count + ?
    click_counts_between    SELECT short_url_click_analytics WHERE url_id = ? AND time BETWEEN ? AND ?
"""

import asyncio
import datetime
import logging
from typing import Protocol

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.errors import DuplicateError
from shortener.models import Alias, ClickCount, UrlRecord

__all__ = ["Datastore", "SqlDatastore"]

logger = logging.getLogger(__name__)

DATASTORE_READS_TOTAL = Counter(
    "shortener_datastore_reads_total",
    "Datastore read operations",
    ["operation"],
)
DATASTORE_WRITES_TOTAL = Counter(
    "shortener_datastore_writes_total",
    "Datastore write operations",
    ["operation"],
)


class Datastore(Protocol):
    async def find_by_id(self, url_id: int) -> UrlRecord | None: ...

    async def find_by_hash_and_url(self, long_url_hash: str, long_url: str) -> UrlRecord | None: ...

    async def find_by_alias(self, code: str) -> UrlRecord | None: ...

    async def alias_exists(self, code: str) -> bool: ...

    async def save_url(
        self,
        long_url: str,
        long_url_hash: str,
        expiry: datetime.datetime | None = None,
        owner: str | None = None,
        alias: str | None = None,
    ) -> UrlRecord: ...

    async def upsert_click_count(self, time: datetime.datetime, url_id: int, count: int) -> None: ...

    async def click_counts_between(
        self, url_id: int, start: datetime.datetime, end: datetime.datetime
    ) -> list[ClickCount]: ...


class SqlDatastore:
    """``Datastore`` over SQLAlchemy async sessions with a concurrency bulkhead."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_concurrency: int):
        assert max_concurrency > 0, f"max_concurrency must be positive, got {max_concurrency!r}"
        self._session_factory = session_factory
        self._slots = asyncio.Semaphore(max_concurrency)

    async def find_by_id(self, url_id: int) -> UrlRecord | None:
        async with self._slots, self._session_factory() as session:
            DATASTORE_READS_TOTAL.labels(operation="find_by_id").inc()
            return await session.get(UrlRecord, url_id)

    async def find_by_hash_and_url(self, long_url_hash: str, long_url: str) -> UrlRecord | None:
        async with self._slots, self._session_factory() as session:
            DATASTORE_READS_TOTAL.labels(operation="find_by_hash_and_url").inc()
            result = await session.execute(
                select(UrlRecord).where(
                    UrlRecord.long_url_hash == long_url_hash,
                    UrlRecord.long_url == long_url,
                )
            )
            return result.scalar_one_or_none()

    async def find_by_alias(self, code: str) -> UrlRecord | None:
        async with self._slots, self._session_factory() as session:
            DATASTORE_READS_TOTAL.labels(operation="find_by_alias").inc()
            result = await session.execute(
                select(UrlRecord).join(Alias, Alias.url_id == UrlRecord.id).where(Alias.code == code)
            )
            return result.scalar_one_or_none()

    async def alias_exists(self, code: str) -> bool:
        async with self._slots, self._session_factory() as session:
            DATASTORE_READS_TOTAL.labels(operation="alias_exists").inc()
            result = await session.execute(select(Alias.code).where(Alias.code == code))
            return result.scalar_one_or_none() is not None

    async def save_url(
        self,
        long_url: str,
        long_url_hash: str,
        expiry: datetime.datetime | None = None,
        owner: str | None = None,
        alias: str | None = None,
    ) -> UrlRecord:
        async with self._slots, self._session_factory() as session:
            record = UrlRecord(long_url=long_url, long_url_hash=long_url_hash, expiry=expiry, owner=owner)
            session.add(record)
            try:
                await session.flush()
                if alias:
                    session.add(Alias(code=alias, url_id=record.id))
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                # Losing writer of a check-then-insert race on the alias or (hash, url).
                logger.warning(f"Duplicate insert rejected for alias={alias!r} url={long_url!r}")
                raise DuplicateError("A short URL already exists for this request") from exc
            DATASTORE_WRITES_TOTAL.labels(operation="save_url").inc()
            await session.refresh(record)
            return record

    async def upsert_click_count(self, time: datetime.datetime, url_id: int, count: int) -> None:
        stmt = insert(ClickCount).values(time=time, url_id=url_id, count=count)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ClickCount.time, ClickCount.url_id],
            set_={"count": ClickCount.count + stmt.excluded["count"]},
        )
        async with self._slots, self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
            DATASTORE_WRITES_TOTAL.labels(operation="upsert_click_count").inc()

    async def click_counts_between(
        self, url_id: int, start: datetime.datetime, end: datetime.datetime
    ) -> list[ClickCount]:
        async with self._slots, self._session_factory() as session:
            DATASTORE_READS_TOTAL.labels(operation="click_counts_between").inc()
            result = await session.execute(
                select(ClickCount)
                .where(
                    ClickCount.url_id == url_id,
                    ClickCount.time >= start,
                    ClickCount.time <= end,
                )
                .order_by(ClickCount.time.asc())
            )
            return list(result.scalars().all())
