import logging

from price_checker.config import MOVING_AVERAGE_PERIODS
from price_checker.errors import stock_data_not_found
from price_checker.models import MonitoringConfig, StockData, Tick
from price_checker.moving_average import MovingAverageEngine
from price_checker.price_store import PriceStore
from price_checker.provider import QuoteProvider, validate_symbol_format
from price_checker.registry import SymbolRegistry
from price_checker.tables import utcnow

logger = logging.getLogger(__name__)


class StockService:
    """Operations behind the request-facing surface: read, fetch now, toggle monitoring"""

    def __init__(
        self,
        provider: QuoteProvider,
        store: PriceStore,
        registry: SymbolRegistry,
        moving_average: MovingAverageEngine,
        moving_average_periods: int = MOVING_AVERAGE_PERIODS,
    ):
        self.provider = provider
        self.store = store
        self.registry = registry
        self.moving_average = moving_average
        self.moving_average_periods = moving_average_periods

    async def get_stock_data(self, symbol: str) -> StockData:
        symbol = validate_symbol_format(symbol)

        latest = await self.store.latest(symbol)
        if latest is None:
            logger.warning("No data found for symbol: %s", symbol)
            raise stock_data_not_found(symbol)

        average = await self.moving_average.compute(symbol, self.moving_average_periods)
        config = await self.registry.get(symbol)

        return StockData(
            symbol=latest.symbol,
            current_price=latest.price_str,
            last_updated=latest.timestamp,
            moving_average=average.average,
            monitoring_status=config.is_active if config else False,
            last_fetch=config.last_fetch if config else None,
        )

    async def fetch_now(self, symbol: str) -> Tick:
        """Fetch and store one quote immediately. Monitoring state is not touched."""
        symbol = validate_symbol_format(symbol)
        logger.info("Manual fetch requested for symbol: %s", symbol)

        quote = await self.provider.get_quote(symbol)
        tick = await self.store.append(symbol, quote.current_price, utcnow())

        logger.info("Fetched and saved price for %s: %s", symbol, tick.price_str)
        return tick

    async def set_monitoring(self, symbol: str, is_active: bool) -> MonitoringConfig:
        if is_active:
            return await self.registry.enable(symbol)
        return await self.registry.disable(symbol)
