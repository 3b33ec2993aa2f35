import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from price_checker.config import (
    FINNHUB_API_KEY,
    MAX_CONCURRENT_REQUESTS,
    RATE_LIMIT_DELAY,
    STOCK_FETCH_INTERVAL,
    configure_logging,
    validate_config,
)
from price_checker.database import create_engine, create_session_factory, init_db
from price_checker.health import HealthChecker
from price_checker.models import HealthStatus
from price_checker.moving_average import MovingAverageEngine
from price_checker.price_store import PriceStore
from price_checker.provider import FinnhubQuoteProvider
from price_checker.registry import MonitoringRepository, SymbolRegistry
from price_checker.scheduler import FetchScheduler
from price_checker.service import StockService
from price_checker.validation_cache import ValidationCache

logger = logging.getLogger("price_checker")


@dataclass
class App:
    engine: AsyncEngine
    cache: ValidationCache
    provider: FinnhubQuoteProvider
    store: PriceStore
    registry: SymbolRegistry
    scheduler: FetchScheduler
    service: StockService
    health: HealthChecker

    async def health_status(self) -> HealthStatus:
        return await self.health.check()

    async def close(self):
        self.scheduler.shutdown()
        await self.provider.aclose()
        await self.cache.close()
        await self.engine.dispose()


def build_app() -> App:
    """Wire every component from config. Raises ConfigurationError without an API key."""
    engine = create_engine()
    session_factory = create_session_factory(engine)
    cache = ValidationCache()
    provider = FinnhubQuoteProvider(api_key=FINNHUB_API_KEY, cache=cache)
    store = PriceStore(session_factory)
    registry = SymbolRegistry(MonitoringRepository(session_factory), provider)
    scheduler = FetchScheduler(
        registry,
        provider,
        store,
        max_concurrent_requests=MAX_CONCURRENT_REQUESTS,
        rate_limit_delay_ms=RATE_LIMIT_DELAY,
        schedule=STOCK_FETCH_INTERVAL,
    )
    service = StockService(provider, store, registry, MovingAverageEngine(store))
    health = HealthChecker(engine, provider)
    return App(engine, cache, provider, store, registry, scheduler, service, health)


async def start():
    """Main entry point"""
    configure_logging()
    validate_config()

    app = build_app()
    logger.info(
        "Starting price checker: batch size %d, %dms between batches, schedule %s",
        MAX_CONCURRENT_REQUESTS, RATE_LIMIT_DELAY, STOCK_FETCH_INTERVAL,
    )
    try:
        await init_db(app.engine)

        health = await app.health_status()
        if health.healthy:
            logger.info("Health check passed: database=%s external_api=%s", health.database, health.external_api)
        else:
            logger.warning(
                "Health check failed, starting anyway: database=%s external_api=%s",
                health.database, health.external_api,
            )

        app.scheduler.start()
        await asyncio.Event().wait()
    finally:
        await app.close()


def run():
    try:
        asyncio.run(start())
    except KeyboardInterrupt:
        logger.info("Shutting down")
