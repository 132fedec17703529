"""Short-link creation and click analytics queries.

Flow Diagram: shorten()
========================
::
    ┌─────────────┐
    │ POST        │
    │ /shorten    │
    └──────┬──────┘
           ▼
    ┌─────────────┐   taken    ┌─────────────┐
    │ Alias free? ├───────────►│ Duplicate   │
    └──────┬──────┘            │ Error (409) │
           ▼                   └─────────────┘
    ┌─────────────┐   exists          ▲
    │ SHA-256 +   ├───────────────────┘
    │ dedup check │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT      │──► unique violation → DuplicateError
    │ record/alias│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ "_" + b62(id│
    │ ) or alias  │
    └─────────────┘

Key Behaviours
===============
- A long URL can be shortened once; a second request for it is a duplicate.
- The alias check and the insert are not atomic; the losing writer of a race
  gets ``DuplicateError`` from the unique constraint.
- Analytics are only visible to the record's owner.
"""

import datetime
import hashlib
import logging
import time

from prometheus_client import Counter, Histogram

from shortener.codec import encoded_code, split_code
from shortener.errors import DuplicateError, ForbiddenError, InvalidCodeError, NotFoundError
from shortener.models import ClickCount, UrlRecord
from shortener.repository import Datastore

__all__ = ["UrlService", "hash_url"]

logger = logging.getLogger(__name__)

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortener_creation_requests_total",
    "Total short-link creation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "shortener_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


def hash_url(long_url: str) -> str:
    return hashlib.sha256(long_url.encode("utf-8")).hexdigest()


class UrlService:
    def __init__(self, datastore: Datastore, base_url: str):
        self._datastore = datastore
        self._base_url = base_url.rstrip("/")

    def short_url(self, short_code: str) -> str:
        return f"{self._base_url}/{short_code}"

    async def shorten(
        self,
        long_url: str,
        principal: str,
        alias: str | None = None,
        expiry: datetime.datetime | None = None,
    ) -> str:
        """Store ``long_url`` and return its public short code.

        Raises:
            DuplicateError: the alias is taken or the long URL is already shortened.
        """
        start_time = time.perf_counter()
        try:
            if alias and await self._datastore.alias_exists(alias):
                raise DuplicateError("Custom short URL already exists")

            long_url_hash = hash_url(long_url)
            if await self._datastore.find_by_hash_and_url(long_url_hash, long_url) is not None:
                raise DuplicateError("A short URL exists for the long URL")

            record = await self._datastore.save_url(
                long_url,
                long_url_hash,
                expiry=expiry,
                owner=principal,
                alias=alias,
            )
        except DuplicateError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status="duplicate").inc()
            logger.info(f"Rejected shorten request from {principal}: {exc}")
            raise
        except Exception:
            URL_CREATION_REQUESTS_TOTAL.labels(status="error").inc()
            raise
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

        URL_CREATION_REQUESTS_TOTAL.labels(status="success").inc()
        short_code = alias or encoded_code(record.id)
        logger.info(f"Created short code {short_code} for url id {record.id}")
        return short_code

    async def find_record(self, short_code: str) -> UrlRecord:
        try:
            url_id, alias = split_code(short_code)
        except InvalidCodeError as exc:
            raise NotFoundError("A long URL does not exist for the short URL") from exc

        if url_id is not None:
            record = await self._datastore.find_by_id(url_id)
        else:
            record = await self._datastore.find_by_alias(alias)
        if record is None:
            raise NotFoundError("A long URL does not exist for the short URL")
        return record

    async def click_analytics(
        self,
        short_code: str,
        principal: str,
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> list[ClickCount]:
        record = await self.find_record(short_code)
        if record.owner != principal:
            raise ForbiddenError("User is not the owner of the URL")
        return await self._datastore.click_counts_between(record.id, start, end)
