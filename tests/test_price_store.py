from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from price_checker.errors import ErrorKind, PriceCheckerError
from tests.conftest import T0


@pytest.mark.asyncio
async def test_append_returns_stored_tick(store) -> None:  # noqa: ANN001
    tick = await store.append("AAPL", 229.35, T0)

    assert tick.symbol == "AAPL"
    assert tick.price == Decimal("229.350000")
    assert tick.timestamp == T0
    assert tick.created_at is not None


@pytest.mark.asyncio
async def test_duplicate_append_keeps_exactly_one_tick(store) -> None:  # noqa: ANN001
    await store.append("AAPL", "100.5", T0)

    with pytest.raises(PriceCheckerError) as exc:
        await store.append("AAPL", "999", T0)

    assert exc.value.kind is ErrorKind.DUPLICATE_ENTRY
    assert exc.value.context["symbol"] == "AAPL"
    assert exc.value.context["timestamp"] == T0.isoformat()

    ticks = await store.recent("AAPL", 10)
    assert len(ticks) == 1
    assert ticks[0].price == Decimal("100.500000")


@pytest.mark.asyncio
async def test_same_instant_for_different_symbols_is_allowed(store) -> None:  # noqa: ANN001
    await store.append("AAPL", "1", T0)
    await store.append("MSFT", "2", T0)
    assert (await store.latest("AAPL")).price == Decimal("1")
    assert (await store.latest("MSFT")).price == Decimal("2")


@pytest.mark.asyncio
async def test_append_rejects_invalid_entities(store) -> None:  # noqa: ANN001
    with pytest.raises(PriceCheckerError) as exc:
        await store.append("BRK.B", "1", T0)
    assert exc.value.kind is ErrorKind.INVALID_SYMBOL
    with pytest.raises(ValueError):
        await store.append("AAPL", "-5", T0)
    assert await store.latest("AAPL") is None


@pytest.mark.asyncio
async def test_append_uppercases_symbol(store) -> None:  # noqa: ANN001
    tick = await store.append(" aapl ", "1.5", T0)

    assert tick.symbol == "AAPL"
    assert (await store.latest("AAPL")).price == Decimal("1.5")


@pytest.mark.asyncio
async def test_latest_is_none_without_data(store) -> None:  # noqa: ANN001
    assert await store.latest("NONE") is None


@pytest.mark.asyncio
async def test_recent_is_most_recent_first_and_bounded(store) -> None:  # noqa: ANN001
    # insert out of order to make sure ordering comes from the query
    for offset in (3, 0, 4, 1, 2):
        await store.append("AAPL", 100 + offset, T0 + timedelta(minutes=offset))

    ticks = await store.recent("AAPL", 3)

    assert [t.price for t in ticks] == [Decimal("104"), Decimal("103"), Decimal("102")]
    assert ticks[0].timestamp == T0 + timedelta(minutes=4)
    assert (await store.latest("aapl")).price == Decimal("104")
    assert await store.recent("AAPL", 0) == []
    assert len(await store.recent("AAPL", 50)) == 5
