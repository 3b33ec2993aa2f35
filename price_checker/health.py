"""
Aggregate health: a SELECT 1 against the database plus the quote
provider's own health check. Both must pass for the process to report healthy.
"""
import logging
import time
from typing import Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from price_checker.config import ENVIRONMENT
from price_checker.models import HealthStatus
from price_checker.provider import QuoteProvider

logger = logging.getLogger(__name__)


class HealthChecker:

    def __init__(
        self,
        engine: AsyncEngine,
        provider: QuoteProvider,
        environment: str = ENVIRONMENT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.provider = provider
        self.environment = environment
        self.clock = clock
        self.started_at = clock()

    async def database_status(self) -> str:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1 AS health_check"))
        except Exception as e:
            logger.error("Database health check failed: %s", str(e) or type(e).__name__)
            return "error"
        return "connected"

    async def external_api_status(self) -> str:
        # is_healthy applies its own timeout and never raises
        if await self.provider.is_healthy():
            return "connected"
        return "error"

    async def check(self) -> HealthStatus:
        database = await self.database_status()
        external_api = await self.external_api_status()
        healthy = database == "connected" and external_api == "connected"
        return HealthStatus(
            status="healthy" if healthy else "unhealthy",
            database=database,
            external_api=external_api,
            uptime_ms=int((self.clock() - self.started_at) * 1000),
            environment=self.environment,
        )
