"""
Symbol registry: per-symbol monitoring state.

    absent --enable--> active --disable--> inactive --enable--> active

enable is idempotent and only succeeds for symbols the quote provider
accepts. Uniqueness of the symbol column is left to the database, so two
concurrent first-time enables end with one row and one MONITORING_CONFLICT.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_checker.database import session_scope
from price_checker.errors import invalid_symbol, monitoring_conflict, monitoring_not_found
from price_checker.models import MonitoringConfig, is_storable_symbol, normalize_symbol
from price_checker.models.tick import as_utc
from price_checker.provider import QuoteProvider
from price_checker.tables import StockMonitoringRow, utcnow

logger = logging.getLogger(__name__)


def _to_config(row: StockMonitoringRow) -> MonitoringConfig:
    return MonitoringConfig(
        id=row.id,
        symbol=row.symbol,
        is_active=row.is_active,
        last_fetch=row.last_fetch,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class MonitoringRepository:
    """Storage port for the stock_monitoring table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_symbol(self, symbol: str) -> Optional[MonitoringConfig]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StockMonitoringRow).where(StockMonitoringRow.symbol == symbol)
            )
            row = result.scalar_one_or_none()
            return _to_config(row) if row is not None else None

    async def insert(self, symbol: str, is_active: bool = True) -> MonitoringConfig:
        """Raises IntegrityError when the symbol already has a row"""
        row = StockMonitoringRow(symbol=symbol, is_active=is_active, last_fetch=None)
        async with session_scope(self.session_factory) as session:
            session.add(row)
            await session.flush()
        return _to_config(row)

    async def set_active(self, symbol: str, is_active: bool) -> Optional[MonitoringConfig]:
        return await self._update(symbol, is_active=is_active)

    async def set_last_fetch(self, symbol: str, instant: datetime) -> Optional[MonitoringConfig]:
        return await self._update(symbol, last_fetch=as_utc(instant))

    async def _update(self, symbol: str, **values) -> Optional[MonitoringConfig]:
        # Single UPDATE so concurrent writers never overwrite each other's columns
        statement = (
            update(StockMonitoringRow)
            .where(StockMonitoringRow.symbol == symbol)
            .values(updated_at=utcnow(), **values)
        )
        async with session_scope(self.session_factory) as session:
            result = await session.execute(statement)
            if result.rowcount == 0:
                return None
            row = (await session.execute(
                select(StockMonitoringRow).where(StockMonitoringRow.symbol == symbol)
            )).scalar_one()
            return _to_config(row)

    async def list(self, active_only: bool = True) -> List[MonitoringConfig]:
        query = select(StockMonitoringRow).order_by(StockMonitoringRow.created_at.asc(), StockMonitoringRow.id.asc())
        if active_only:
            query = query.where(StockMonitoringRow.is_active.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_config(row) for row in result.scalars()]


class SymbolRegistry:

    def __init__(self, repository: MonitoringRepository, provider: QuoteProvider):
        self.repository = repository
        self.provider = provider

    @staticmethod
    def _normalize(symbol: str) -> str:
        normalized = normalize_symbol(symbol)
        if not is_storable_symbol(normalized):
            raise invalid_symbol(normalized, "Symbol must be 1-10 uppercase letters")
        return normalized

    async def enable(self, symbol: str) -> MonitoringConfig:
        symbol = self._normalize(symbol)
        logger.info("Enabling monitoring for symbol: %s", symbol)

        # Provider errors abort the transition before any row is touched
        await self.provider.get_quote(symbol)

        existing = await self.repository.find_by_symbol(symbol)
        if existing is not None:
            config = await self.repository.set_active(symbol, True)
            if config is not None:
                logger.info("Monitoring for %s is active (id=%s)", symbol, config.id)
                return config

        try:
            config = await self.repository.insert(symbol, is_active=True)
        except IntegrityError as e:
            logger.warning("Concurrent monitoring insert for %s", symbol)
            raise monitoring_conflict(symbol) from e

        logger.info("Created monitoring configuration for %s (id=%s)", symbol, config.id)
        return config

    async def disable(self, symbol: str) -> MonitoringConfig:
        symbol = self._normalize(symbol)
        existing = await self.repository.find_by_symbol(symbol)
        if existing is None:
            raise monitoring_not_found(symbol)
        if not existing.is_active:
            logger.debug("Monitoring for %s already inactive", symbol)
            return existing

        config = await self.repository.set_active(symbol, False)
        if config is None:
            raise monitoring_not_found(symbol)
        logger.info("Deactivated monitoring for %s", symbol)
        return config

    async def update_fetch_timestamp(self, symbol: str, instant: datetime) -> MonitoringConfig:
        symbol = self._normalize(symbol)
        config = await self.repository.set_last_fetch(symbol, instant)
        if config is None:
            raise monitoring_not_found(symbol)
        return config

    async def get(self, symbol: str) -> Optional[MonitoringConfig]:
        return await self.repository.find_by_symbol(normalize_symbol(symbol))

    async def list(self, active_only: bool = True) -> List[MonitoringConfig]:
        """Configs ordered by creation time, oldest first"""
        return await self.repository.list(active_only)
