"""Write-behind click aggregation.

Clicks are counted in Redis hashes, one hash per time bucket, and flushed to
``short_url_click_analytics`` once the bucket can no longer receive clicks.

Bucket Keys
===========
The bucket granularity is an ordered, contiguous run of
``year.month.day.hour.minute.second`` (``seconds`` is accepted as well)::

    format "year.month.day.hour"   click at 2025-12-21T10:42:07Z  →  "2025.12.21.10"
    format "year.month"            click at 2025-12-21T10:42:07Z  →  "2025.12"

Parsing a key gives back the bucket's start with every missing field at its
zero value (month and day 1). A format without ``year`` parses to the current
year.

Flow Diagram: record_click / flush
===================================
::
    record_click(code, ts)               flush(bucket_key)
    ──────────────────────               ─────────────────────────────────
    detached task:                       HGETALL analytics:<bucket_key>
      HINCRBY analytics:<key> code 1     for each (code, count):
      EXPIRE NX (bounded)                  resolve code → url id (skip on failure)
    failures logged only                   upsert (bucket time, url id) += count
                                         DEL analytics:<bucket_key>

Key Behaviours
===============
- ``record_click`` returns immediately and never raises into the request.
- One bad entry never aborts a flush; the bucket is deleted after every entry
  has been attempted.
- Flushing is process-then-delete: a crash between the upserts and the delete
  can double count on a retried flush, a crash before any upsert loses the
  bucket.
"""

import asyncio
import calendar
import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter

from shortener.codec import split_code
from shortener.errors import InvalidCodeError
from shortener.repository import Datastore
from shortener.resolver import utcnow
from shortener.store import CoordinationStore

__all__ = ["BucketKeyFormat", "ClickAggregator", "FlushReport", "ANALYTICS_KEY_PREFIX"]

logger = logging.getLogger(__name__)

ANALYTICS_KEY_PREFIX = "analytics:"

UNITS = ("year", "month", "day", "hour", "minute", "second")
_UNIT_ALIASES = {"seconds": "second"}

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "month": 31 * 86400,
    "year": 366 * 86400,
}
_MIN_BUCKET_TTL_SECONDS = 3600

CLICKS_RECORDED_TOTAL = Counter(
    "shortener_clicks_recorded_total",
    "Clicks counted into analytics buckets",
)
CLICKS_FAILED_TOTAL = Counter(
    "shortener_clicks_failed_total",
    "Clicks that could not be counted",
)
FLUSH_ENTRIES_TOTAL = Counter(
    "shortener_flush_entries_total",
    "Analytics bucket entries processed by flush",
    ["result"],
)


def _as_utc(timestamp: datetime.datetime) -> datetime.datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=datetime.UTC)
    return timestamp.astimezone(datetime.UTC)


class BucketKeyFormat:
    """Bidirectional mapping between timestamps and bucket keys."""

    def __init__(self, pattern: str, clock: Callable[[], datetime.datetime] = utcnow):
        units = tuple(_UNIT_ALIASES.get(part.strip(), part.strip()) for part in pattern.split("."))
        for unit in units:
            if unit not in UNITS:
                raise ValueError(f"Unknown time key format part: {unit!r}")
        positions = [UNITS.index(unit) for unit in units]
        if positions != list(range(positions[0], positions[0] + len(positions))):
            raise ValueError(f"Time key format must be an ordered, contiguous run of {'.'.join(UNITS)}: {pattern!r}")

        self.pattern = pattern
        self.units = units
        self._clock = clock

    @property
    def finest_unit(self) -> str:
        return self.units[-1]

    @property
    def bucket_ttl_seconds(self) -> int:
        return max(3 * _UNIT_SECONDS[self.finest_unit], _MIN_BUCKET_TTL_SECONDS)

    def key_for(self, timestamp: datetime.datetime) -> str:
        timestamp = _as_utc(timestamp)
        parts = []
        for unit in self.units:
            value = getattr(timestamp, unit)
            parts.append(str(value) if unit == "year" else f"{value:02d}")
        return ".".join(parts)

    def parse(self, bucket_key: str) -> datetime.datetime:
        key_parts = bucket_key.split(".")
        if len(key_parts) != len(self.units):
            raise ValueError(
                f"Time key format mismatch. Expected {len(self.units)} parts, got {len(key_parts)}"
            )

        fields = {"year": self._clock().year, "month": 1, "day": 1, "hour": 0, "minute": 0, "second": 0}
        for unit, raw in zip(self.units, key_parts):
            fields[unit] = int(raw)
        return datetime.datetime(tzinfo=datetime.UTC, **fields)

    def previous_bucket(self, timestamp: datetime.datetime) -> datetime.datetime:
        """Step ``timestamp`` back by one bucket of the finest unit."""
        timestamp = _as_utc(timestamp)
        unit = self.finest_unit
        if unit == "year":
            year = timestamp.year - 1
            day = min(timestamp.day, calendar.monthrange(year, timestamp.month)[1])
            return timestamp.replace(year=year, day=day)
        if unit == "month":
            year, month = (timestamp.year, timestamp.month - 1) if timestamp.month > 1 else (timestamp.year - 1, 12)
            day = min(timestamp.day, calendar.monthrange(year, month)[1])
            return timestamp.replace(year=year, month=month, day=day)
        return timestamp - datetime.timedelta(seconds=_UNIT_SECONDS[unit])


@dataclass
class FlushReport:
    """Outcome of one bucket flush."""

    bucket_key: str
    flushed: int = 0
    skipped: int = 0
    clicks: int = 0


class ClickAggregator:
    """Counts clicks per bucket in the coordination store and flushes them to the Datastore."""

    def __init__(
        self,
        store: CoordinationStore,
        datastore: Datastore,
        key_format: BucketKeyFormat,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._store = store
        self._datastore = datastore
        self.key_format = key_format
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    @staticmethod
    def store_key(bucket_key: str) -> str:
        return f"{ANALYTICS_KEY_PREFIX}{bucket_key}"

    def record_click(self, short_code: str, timestamp: datetime.datetime | None = None) -> None:
        """Schedule a click increment and return without waiting for it."""
        if not short_code:
            return
        timestamp = timestamp or self._clock()
        task = asyncio.get_running_loop().create_task(self._increment(short_code, timestamp))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _increment(self, short_code: str, timestamp: datetime.datetime) -> None:
        try:
            bucket_key = self.key_format.key_for(timestamp)
            await self._store.hincrby(
                self.store_key(bucket_key),
                short_code,
                1,
                self.key_format.bucket_ttl_seconds,
            )
            CLICKS_RECORDED_TOTAL.inc()
        except Exception:
            CLICKS_FAILED_TOTAL.inc()
            logger.warning(f"Failed to record click for {short_code!r}", exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight click increments, e.g. on shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def has_bucket(self, bucket_key: str) -> bool:
        return await self._store.exists(self.store_key(bucket_key))

    async def pending_buckets(self) -> list[str]:
        """Bucket keys currently held in the store, sorted by key."""
        keys = await self._store.scan_prefix(ANALYTICS_KEY_PREFIX)
        return sorted(key[len(ANALYTICS_KEY_PREFIX):] for key in keys)

    async def resolve_url_id(self, short_code: str) -> int | None:
        try:
            url_id, alias = split_code(short_code)
        except InvalidCodeError:
            return None
        if url_id is not None:
            return url_id
        record = await self._datastore.find_by_alias(alias)
        return record.id if record is not None else None

    async def flush(self, bucket_key: str) -> FlushReport:
        bucket_time = self.key_format.parse(bucket_key)
        store_key = self.store_key(bucket_key)
        report = FlushReport(bucket_key=bucket_key)

        entries = await self._store.hgetall(store_key)
        if not entries:
            return report

        for short_code, raw_count in entries.items():
            try:
                count = int(raw_count)
                if count <= 0:
                    raise ValueError(f"non-positive count {count}")
                url_id = await self.resolve_url_id(short_code)
                if url_id is None:
                    raise LookupError("short code does not resolve to a url id")
                await self._datastore.upsert_click_count(bucket_time, url_id, count)
            except Exception as exc:
                report.skipped += 1
                FLUSH_ENTRIES_TOTAL.labels(result="skipped").inc()
                logger.warning(f"Skipping analytics entry {short_code!r}={raw_count!r} in {bucket_key}: {exc}")
                continue
            report.flushed += 1
            report.clicks += count
            FLUSH_ENTRIES_TOTAL.labels(result="flushed").inc()

        await self._store.delete(store_key)
        logger.info(
            f"Flushed analytics bucket {bucket_key}: {report.flushed} entries, "
            f"{report.clicks} clicks, {report.skipped} skipped"
        )
        return report
