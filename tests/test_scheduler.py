from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from price_checker.errors import monitoring_not_found, provider_error
from price_checker.models import MonitoringConfig, Tick
from price_checker.registry import SymbolRegistry
from price_checker.scheduler import JOB_ID, FetchScheduler, build_trigger, partition
from tests.conftest import T0, StepClock, StubProvider

SYMBOLS = [f"SYM{chr(ord('A') + i)}" for i in range(12)]


class FakeRegistry:
    def __init__(self, symbols, fail_updates=()) -> None:  # noqa: ANN001
        self.symbols = list(symbols)
        self.fail_updates = set(fail_updates)
        self.fetches: dict[str, datetime] = {}

    async def list(self, active_only: bool = True) -> list[MonitoringConfig]:
        return [
            MonitoringConfig(id=i, symbol=s, is_active=True, created_at=T0, updated_at=T0)
            for i, s in enumerate(self.symbols, start=1)
        ]

    async def update_fetch_timestamp(self, symbol: str, instant: datetime):  # noqa: ANN201
        if symbol in self.fail_updates:
            raise monitoring_not_found(symbol)
        self.fetches[symbol] = instant


class FakeStore:
    def __init__(self, events: list) -> None:
        self.events = events
        self.ticks: list[Tick] = []

    async def append(self, symbol, price, instant) -> Tick:  # noqa: ANN001
        tick = Tick(symbol=symbol, price=price, timestamp=instant)
        self.ticks.append(tick)
        self.events.append(("append", symbol))
        return tick


class RecordingSleep:
    def __init__(self, events: list) -> None:
        self.events = events
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.events.append(("sleep", seconds))


def make_scheduler(symbols, provider=None, fail_updates=(), batch_size=5, delay_ms=1000):  # noqa: ANN001, ANN201
    events: list = []
    sleep = RecordingSleep(events)
    registry = FakeRegistry(symbols, fail_updates)
    store = FakeStore(events)
    scheduler = FetchScheduler(
        registry, provider or StubProvider(), store,
        max_concurrent_requests=batch_size, rate_limit_delay_ms=delay_ms,
        schedule="60", sleep=sleep, clock=StepClock(),
    )
    return scheduler, registry, store, sleep, events


def test_partition() -> None:
    assert [len(b) for b in partition(SYMBOLS, 5)] == [5, 5, 2]
    assert partition(["A", "B"], 5) == [["A", "B"]]
    assert partition([], 5) == []
    with pytest.raises(ValueError):
        partition(["A"], 0)


@pytest.mark.asyncio
async def test_twelve_symbols_run_in_three_paced_batches() -> None:
    scheduler, registry, store, sleep, events = make_scheduler(SYMBOLS)

    summary = await scheduler.run_once()

    assert summary.batches == [5, 5, 2]
    assert summary.total == 12
    assert summary.successful == 12
    assert summary.failed == 0
    assert sleep.delays == [1.0, 1.0]

    # pauses sit after the 5th and 10th append, never after the last batch
    kinds = [kind for kind, _ in events]
    sleep_positions = [i for i, kind in enumerate(kinds) if kind == "sleep"]
    assert sleep_positions == [5, 11]
    assert kinds[-1] == "append"
    assert set(registry.fetches) == set(SYMBOLS)


@pytest.mark.asyncio
async def test_batches_follow_registry_order() -> None:
    provider = StubProvider()
    scheduler, *_ = make_scheduler(SYMBOLS, provider=provider, batch_size=5)

    await scheduler.run_once()

    assert provider.calls[:5] == SYMBOLS[:5]
    assert sorted(provider.calls[5:10]) == SYMBOLS[5:10]


@pytest.mark.asyncio
async def test_failure_is_isolated_within_its_batch() -> None:
    provider = StubProvider(errors={"SYMC": provider_error("upstream 502", "Stub")})
    scheduler, registry, store, _, _ = make_scheduler(SYMBOLS[:5], provider=provider)

    summary = await scheduler.run_once()

    assert summary.successful == 4
    assert summary.failed == 1
    failure = summary.failures[0]
    assert failure.symbol == "SYMC"
    assert failure.success is False
    assert failure.error == "Stock data provider error (Stub): upstream 502"
    assert {t.symbol for t in store.ticks} == set(SYMBOLS[:5]) - {"SYMC"}
    # the failed symbol still gets its fetch attempt recorded
    assert "SYMC" in registry.fetches


class GatedProvider(StubProvider):
    """Holds every call until the whole expected batch is in flight."""

    def __init__(self, batch_sizes) -> None:  # noqa: ANN001
        super().__init__()
        self.pending = list(batch_sizes)
        self.gate = asyncio.Event()
        self.in_flight = 0
        self.peak = 0
        self.events: list[str] = []

    async def get_quote(self, symbol: str):  # noqa: ANN201
        gate = self.gate
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        self.events.append("start")
        if self.in_flight == self.pending[0]:
            self.pending.pop(0)
            gate.set()

        await gate.wait()

        self.in_flight -= 1
        self.events.append("finish")
        if self.in_flight == 0:
            self.gate = asyncio.Event()
        return await super().get_quote(symbol)


@pytest.mark.asyncio
async def test_batch_members_run_concurrently_up_to_the_limit() -> None:
    provider = GatedProvider([5, 5, 2])
    scheduler, _, store, _, _ = make_scheduler(SYMBOLS, provider=provider)

    # a sequential batch would never open the gate
    summary = await asyncio.wait_for(scheduler.run_once(), timeout=2)

    assert summary.successful == 12
    assert provider.peak == 5
    assert provider.events == (
        ["start"] * 5 + ["finish"] * 5
        + ["start"] * 5 + ["finish"] * 5
        + ["start"] * 2 + ["finish"] * 2
    )
    assert len(store.ticks) == 12


@pytest.mark.asyncio
async def test_slow_symbol_does_not_block_batch_mates() -> None:
    class MixedProvider(StubProvider):
        async def get_quote(self, symbol: str):  # noqa: ANN201
            if symbol == "SYMA":
                await asyncio.sleep(0.05)
                raise RuntimeError("boom")
            return await super().get_quote(symbol)

    scheduler, _, store, _, _ = make_scheduler(SYMBOLS[:3], provider=MixedProvider())
    summary = await scheduler.run_once()

    assert summary.successful == 2
    assert summary.failures[0].symbol == "SYMA"
    assert summary.failures[0].error == "boom"
    assert len(store.ticks) == 2


@pytest.mark.asyncio
async def test_bookkeeping_failure_is_contained() -> None:
    scheduler, registry, _, _, _ = make_scheduler(["SYMA", "SYMB"], fail_updates={"SYMA"})

    summary = await scheduler.run_once()

    assert summary.total == 2
    assert summary.failed == 1
    assert summary.failures[0].symbol == "SYMA"
    assert "SYMB" in registry.fetches


@pytest.mark.asyncio
async def test_empty_registry_is_a_noop() -> None:
    provider = StubProvider()
    scheduler, _, _, sleep, _ = make_scheduler([], provider=provider)

    summary = await scheduler.run_once()

    assert summary.total == 0
    assert summary.batches == []
    assert sleep.delays == []
    assert provider.calls == []
    assert scheduler.last_summary is summary


@pytest.mark.asyncio
async def test_registry_failure_never_escapes() -> None:
    class BrokenRegistry(FakeRegistry):
        async def list(self, active_only: bool = True):  # noqa: ANN201
            raise ConnectionRefusedError("database is down")

    scheduler = FetchScheduler(BrokenRegistry([]), StubProvider(), FakeStore([]), schedule="60")
    summary = await scheduler.run_once()

    assert summary.total == 0
    assert summary.error == "database is down"


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped() -> None:
    release = asyncio.Event()

    class BlockingProvider(StubProvider):
        async def get_quote(self, symbol: str):  # noqa: ANN201
            await release.wait()
            return await super().get_quote(symbol)

    scheduler, *_ = make_scheduler(["SYMA"], provider=BlockingProvider())

    first = asyncio.create_task(scheduler.run_scheduled())
    await asyncio.sleep(0)
    assert await scheduler.run_scheduled() is None

    release.set()
    summary = await first
    assert summary is not None and summary.successful == 1

    # once the first run finished the next tick runs normally
    assert await scheduler.run_scheduled() is not None


@pytest.mark.asyncio
async def test_end_to_end_with_database(store, repository) -> None:  # noqa: ANN001
    provider = StubProvider(prices={"AAPL": 229.35, "MSFT": 410.1}, errors={"TSLA": provider_error("down", "Stub")})
    registry = SymbolRegistry(repository, provider)
    for symbol in ("AAPL", "MSFT", "TSLA"):
        await repository.insert(symbol)

    scheduler = FetchScheduler(
        registry, provider, store, max_concurrent_requests=2, rate_limit_delay_ms=0,
        schedule="60", clock=StepClock(),
    )
    summary = await scheduler.run_once()

    assert summary.batches == [2, 1]
    assert summary.successful == 2
    assert [f.symbol for f in summary.failures] == ["TSLA"]
    assert (await store.latest("AAPL")).price_str == "229.350000"
    assert await store.latest("TSLA") is None
    for config in await registry.list():
        assert config.last_fetch is not None
        assert config.is_active is True


def test_build_trigger_variants() -> None:
    assert isinstance(build_trigger("30"), IntervalTrigger)
    assert isinstance(build_trigger("*/1 * * * *"), CronTrigger)
    assert isinstance(build_trigger("0 */5 * * * *"), CronTrigger)
    assert build_trigger("*/1 * * * *").timezone.utcoffset(None) == timedelta(0)
    for bad in ("0", "every minute", "* * *"):
        with pytest.raises(ValueError):
            build_trigger(bad)


def test_scheduler_rejects_bad_limits() -> None:
    with pytest.raises(ValueError):
        FetchScheduler(FakeRegistry([]), StubProvider(), FakeStore([]), max_concurrent_requests=0)
    with pytest.raises(ValueError):
        FetchScheduler(FakeRegistry([]), StubProvider(), FakeStore([]), rate_limit_delay_ms=-1)


@pytest.mark.asyncio
async def test_start_registers_one_job_and_shutdown_stops_it() -> None:
    scheduler, *_ = make_scheduler(["SYMA"])

    scheduler.start()
    try:
        assert scheduler.running
        jobs = scheduler._scheduler.get_jobs()
        assert [job.id for job in jobs] == [JOB_ID]
        assert jobs[0].max_instances == 1
        with pytest.raises(RuntimeError):
            scheduler.start()
    finally:
        scheduler.shutdown()

    assert not scheduler.running
