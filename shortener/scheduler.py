"""Periodic analytics flush.

The cadence follows the finest unit of the bucket format: a ``...minute``
format ticks once a minute, ``...hour`` once an hour, and ``day`` or coarser
once a day. Each tick fires just after a unit boundary and flushes the bucket
one full bucket duration in the past, which can no longer receive clicks.

Closed buckets are not left behind while they are still in the store. A
tick that starts late (a slow flush, an event loop stall) also flushes every
bucket between the last flushed one and its target, and ``start`` flushes
whatever closed buckets a previous process left in the store.

Timeline: format "year.month.day.hour", offset 1s
==================================================
::
    10:00:01  tick → flush "2025.12.21.09"
    11:00:01  tick → flush "2025.12.21.10"
    12:00:01  tick → bucket "2025.12.21.11" absent → no-op
    14:00:01  late tick → flush "2025.12.21.12", then "2025.12.21.13"
"""

import asyncio
import contextlib
import datetime
import logging
from collections.abc import Callable

from shortener.analytics import ClickAggregator, FlushReport
from shortener.resolver import utcnow

__all__ = ["FlushScheduler"]

logger = logging.getLogger(__name__)

_CADENCE_SECONDS = {"second": 1, "minute": 60, "hour": 3600}
_DAILY = 86400


class FlushScheduler:
    def __init__(
        self,
        aggregator: ClickAggregator,
        offset_seconds: float = 1,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._aggregator = aggregator
        self._format = aggregator.key_format
        self._offset = offset_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._last_flushed: datetime.datetime | None = None

    @property
    def cadence_seconds(self) -> int:
        return _CADENCE_SECONDS.get(self._format.finest_unit, _DAILY)

    def seconds_until_next_tick(self, now: datetime.datetime) -> float:
        epoch = now.timestamp()
        cadence = self.cadence_seconds
        next_boundary = (epoch // cadence + 1) * cadence
        return next_boundary + self._offset - epoch

    def target_bucket_key(self, now: datetime.datetime) -> str:
        return self._format.key_for(self._format.previous_bucket(now))

    def missed_bucket_keys(self, target: datetime.datetime) -> list[str]:
        """Keys of the buckets after the last flushed one and before ``target``, oldest first."""
        if self._last_flushed is None:
            return []
        max_steps = max(1, self._format.bucket_ttl_seconds // self.cadence_seconds)
        missed = []
        bucket = self._format.previous_bucket(target)
        while bucket > self._last_flushed and len(missed) < max_steps:
            missed.append(self._format.key_for(bucket))
            bucket = self._format.previous_bucket(bucket)
        return missed[::-1]

    async def _flush_if_present(self, bucket_key: str) -> FlushReport | None:
        if not await self._aggregator.has_bucket(bucket_key):
            logger.debug(f"No analytics bucket {bucket_key} to flush")
            return None
        logger.info(f"Flushing analytics bucket {bucket_key}")
        return await self._aggregator.flush(bucket_key)

    async def tick(self) -> FlushReport | None:
        bucket_key = self.target_bucket_key(self._clock())
        target = self._format.parse(bucket_key)
        for missed_key in self.missed_bucket_keys(target):
            logger.warning(f"Flush tick for analytics bucket {missed_key} was missed, catching up")
            await self._flush_if_present(missed_key)
        report = await self._flush_if_present(bucket_key)
        self._last_flushed = target
        return report

    async def flush_overdue(self) -> list[FlushReport]:
        """Flush every stored bucket up to and including the current target.

        Keys that do not match the bucket format are logged and left alone.
        """
        bucket_key = self.target_bucket_key(self._clock())
        target = self._format.parse(bucket_key)
        reports = []
        for pending_key in await self._aggregator.pending_buckets():
            try:
                bucket_time = self._format.parse(pending_key)
            except ValueError:
                logger.warning(f"Ignoring analytics bucket {pending_key!r} not matching {self._format.pattern!r}")
                continue
            if bucket_time > target:
                continue
            logger.info(f"Flushing overdue analytics bucket {pending_key}")
            reports.append(await self._aggregator.flush(pending_key))
        self._last_flushed = target
        return reports

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_next_tick(self._clock()))
            try:
                await self.tick()
            except Exception:
                logger.error("Analytics flush tick failed", exc_info=True)

    async def start(self) -> None:
        if self._task is not None:
            return
        try:
            reports = await self.flush_overdue()
            if reports:
                logger.info(f"Flushed {len(reports)} analytics buckets left over from a previous run")
        except Exception:
            logger.warning("Could not flush overdue analytics buckets", exc_info=True)
        logger.info(
            f"Starting analytics flush scheduler (format={self._format.pattern}, every {self.cadence_seconds}s)"
        )
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
