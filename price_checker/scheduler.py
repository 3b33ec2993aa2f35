"""
Scheduled stock price fetching.

One APScheduler job owned by FetchScheduler drives run_once() in UTC. Each
run lists the active symbols, fetches them in batches of
max_concurrent_requests with all-settled semantics, pauses rate_limit_delay
milliseconds between batches, and returns a FetchRunSummary. A run never
raises: every failure ends up in the summary and the log.

Overlapping ticks are skipped. A tick that fires while a run is still in
flight is dropped with a warning.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from price_checker.config import MAX_CONCURRENT_REQUESTS, RATE_LIMIT_DELAY, STOCK_FETCH_INTERVAL
from price_checker.errors import PriceCheckerError
from price_checker.models import FetchRunSummary, SymbolResult
from price_checker.price_store import PriceStore
from price_checker.provider import QuoteProvider
from price_checker.registry import SymbolRegistry
from price_checker.tables import utcnow

logger = logging.getLogger(__name__)

JOB_ID = "stock-price-fetching"
_INTERVAL_SECONDS = re.compile(r"\d+(\.\d+)?")


def build_trigger(schedule: str) -> BaseTrigger:
    """
    Accepts a number of seconds ("30"), a crontab ("*/1 * * * *") or a
    crontab with a leading seconds field ("0 */5 * * * *"). Always UTC.
    """
    schedule = str(schedule).strip()
    if _INTERVAL_SECONDS.fullmatch(schedule):
        seconds = float(schedule)
        if seconds <= 0:
            raise ValueError(f"Fetch interval must be positive, got {schedule!r}")
        return IntervalTrigger(seconds=seconds, timezone=timezone.utc)

    fields = schedule.split()
    if len(fields) == 5:
        return CronTrigger.from_crontab(schedule, timezone=timezone.utc)
    if len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
        return CronTrigger(
            second=second, minute=minute, hour=hour, day=day,
            month=month, day_of_week=day_of_week, timezone=timezone.utc,
        )
    raise ValueError(f"Unsupported fetch schedule: {schedule!r}")


def partition(items: Sequence[str], size: int) -> List[List[str]]:
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def describe_error(error: BaseException) -> str:
    if isinstance(error, PriceCheckerError):
        return error.message
    return str(error) or type(error).__name__


class FetchScheduler:

    def __init__(
        self,
        registry: SymbolRegistry,
        provider: QuoteProvider,
        store: PriceStore,
        max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
        rate_limit_delay_ms: int = RATE_LIMIT_DELAY,
        schedule: str = STOCK_FETCH_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        if rate_limit_delay_ms < 0:
            raise ValueError("rate_limit_delay_ms must be >= 0")
        self.registry = registry
        self.provider = provider
        self.store = store
        self.max_concurrent_requests = max_concurrent_requests
        self.rate_limit_delay_ms = rate_limit_delay_ms
        self.schedule = schedule
        self.sleep = sleep
        self.clock = clock
        self.last_summary: Optional[FetchRunSummary] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight = False

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """Register the fetch job. Must be called from inside a running event loop."""
        if self._scheduler is not None:
            raise RuntimeError("Fetch scheduler already started")
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self.run_scheduled,
            trigger=build_trigger(self.schedule),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Stock price fetching scheduled with interval: %s (UTC)", self.schedule)

    def shutdown(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Stock price fetching scheduler stopped")

    async def run_scheduled(self) -> Optional[FetchRunSummary]:
        """
        Job entry point. APScheduler's max_instances=1 already skips ticks
        that overlap a running job; the in-flight flag covers callers that
        invoke this coroutine directly. Returns None for a skipped tick.
        """
        if self._in_flight:
            logger.warning("Previous stock price fetching run still in progress, skipping this tick")
            return None
        self._in_flight = True
        try:
            return await self.run_once()
        finally:
            self._in_flight = False

    async def run_once(self) -> FetchRunSummary:
        started_at = self.clock()
        results: List[SymbolResult] = []
        batch_sizes: List[int] = []
        run_error = None

        try:
            configs = await self.registry.list(active_only=True)
            symbols = [c.symbol for c in configs]

            if not symbols:
                logger.debug("No active symbols to monitor")
            else:
                logger.info("Processing %d active symbols: %s", len(symbols), ", ".join(symbols))
                batches = partition(symbols, self.max_concurrent_requests)
                for index, batch in enumerate(batches):
                    batch_sizes.append(len(batch))
                    results.extend(await self._process_batch(batch))

                    # Pace the provider between batches, never after the last one
                    if index < len(batches) - 1:
                        await self.sleep(self.rate_limit_delay_ms / 1000)
        except Exception as e:
            run_error = describe_error(e)
            logger.error("Stock price fetching job failed: %s", run_error)

        summary = FetchRunSummary.from_results(started_at, self.clock(), results, batch_sizes, run_error)
        self.last_summary = summary

        if summary.total:
            logger.info(
                "Stock price fetching job completed in %dms: total=%d successful=%d failed=%d",
                summary.duration_ms, summary.total, summary.successful, summary.failed,
            )
        if summary.failures:
            logger.warning(
                "Some symbols failed to process: %s",
                "; ".join(f"{r.symbol}: {r.error}" for r in summary.failures),
            )
        return summary

    async def _process_batch(self, batch: List[str]) -> List[SymbolResult]:
        outcomes = await asyncio.gather(*(self._process_symbol(s) for s in batch), return_exceptions=True)
        results = []
        for symbol, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                results.append(SymbolResult(symbol=symbol, success=False, error=describe_error(outcome)))
            else:
                results.append(outcome)
        return results

    async def _process_symbol(self, symbol: str) -> SymbolResult:
        now = self.clock()
        try:
            quote = await self.provider.get_quote(symbol)
            tick = await self.store.append(symbol, quote.current_price, now)
            await self.registry.update_fetch_timestamp(symbol, now)
        except Exception as e:
            message = describe_error(e)
            logger.warning("Failed to process symbol %s: %s", symbol, message)
            await self._record_attempt(symbol, now)
            return SymbolResult(symbol=symbol, success=False, error=message)

        return SymbolResult(symbol=symbol, success=True, price=tick.price_str)

    async def _record_attempt(self, symbol: str, now: datetime):
        try:
            await self.registry.update_fetch_timestamp(symbol, now)
        except Exception as e:
            logger.error("Failed to update monitoring status for %s: %s", symbol, describe_error(e))
