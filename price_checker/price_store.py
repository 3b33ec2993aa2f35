"""
Append-only time series of price ticks keyed by (symbol, timestamp)
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_checker.database import session_scope
from price_checker.errors import duplicate_entry, invalid_symbol
from price_checker.models import Tick, is_storable_symbol, normalize_symbol
from price_checker.tables import StockPriceRow

logger = logging.getLogger(__name__)


def _to_tick(row: StockPriceRow) -> Tick:
    return Tick(
        symbol=row.symbol,
        price=row.price,
        timestamp=row.timestamp,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PriceStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, symbol: str, price: Union[Decimal, float, str], instant: datetime) -> Tick:
        """
        Insert a tick if (symbol, instant) is not stored yet.

        Raises:
            PriceCheckerError(INVALID_SYMBOL) when the symbol cannot be stored.
            PriceCheckerError(DUPLICATE_ENTRY) when the pair already exists.
            The stored row is left untouched.
        """
        symbol = normalize_symbol(symbol)
        if not is_storable_symbol(symbol):
            raise invalid_symbol(symbol, "Symbol must be 1-10 uppercase letters")
        tick = Tick(symbol=symbol, price=price, timestamp=instant)
        row = StockPriceRow(symbol=tick.symbol, price=tick.price, timestamp=tick.timestamp)

        try:
            async with session_scope(self.session_factory) as session:
                session.add(row)
                await session.flush()
        except IntegrityError as e:
            logger.info("Duplicate price entry for %s at %s", tick.symbol, tick.timestamp.isoformat())
            raise duplicate_entry(tick.symbol, tick.timestamp) from e

        logger.info("Saved stock price for %s at %s: %s", tick.symbol, tick.timestamp.isoformat(), tick.price_str)
        return _to_tick(row)

    async def latest(self, symbol: str) -> Optional[Tick]:
        """Most recent tick for symbol, None if nothing is stored"""
        ticks = await self.recent(symbol, 1)
        return ticks[0] if ticks else None

    async def recent(self, symbol: str, n: int) -> List[Tick]:
        """Up to n ticks, most recent first"""
        if n <= 0:
            return []
        query = (
            select(StockPriceRow)
            .where(StockPriceRow.symbol == normalize_symbol(symbol))
            .order_by(StockPriceRow.timestamp.desc())
            .limit(n)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_tick(row) for row in result.scalars()]
