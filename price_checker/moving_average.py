"""
Fixed-point N-period moving average over the most recent ticks.

Each price is scaled by 10^6 and rounded half-up to an integer before
summing. The integer sum is then divided in double precision and printed
with exactly 6 fractional digits:

    average = format6(sum(round_half_up(p * 10^6)) / count / 10^6)

format6 rounds the exact binary value of the quotient, ties going to the
larger value, so outputs agree digit for digit with any other IEEE-754
implementation of the same formula.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from price_checker.models import MovingAverageResult, normalize_symbol
from price_checker.models.tick import PRICE_DECIMAL_PLACES, PRICE_QUANTUM
from price_checker.price_store import PriceStore

logger = logging.getLogger(__name__)

SCALE = 10 ** PRICE_DECIMAL_PLACES


def _scale(price) -> int:
    # Decimal(float) is exact, so half-up here sees the true product
    return int(Decimal(float(price) * SCALE).to_integral_value(rounding=ROUND_HALF_UP))


def format6(value: float) -> str:
    return f"{Decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP):f}"


def fixed_point_average(prices: Iterable[Decimal]) -> str:
    scaled = [_scale(p) for p in prices]
    if not scaled:
        raise ValueError("Cannot average an empty price window")
    return format6(sum(scaled) / len(scaled) / SCALE)


class MovingAverageEngine:

    def __init__(self, store: PriceStore):
        self.store = store

    async def compute(self, symbol: str, periods: int) -> MovingAverageResult:
        # bool is an int subclass; True is not a window size
        if isinstance(periods, bool) or not isinstance(periods, int) or periods <= 0:
            raise ValueError(f"Invalid periods parameter: {periods!r}. Must be a positive integer.")

        symbol = normalize_symbol(symbol)
        logger.debug("Calculating %d-period moving average for %s", periods, symbol)

        ticks = await self.store.recent(symbol, periods)
        if len(ticks) < periods:
            logger.debug("Insufficient data points for %s: %d < %d", symbol, len(ticks), periods)
            return MovingAverageResult(symbol=symbol, periods=periods, average=None, data_points_used=len(ticks))

        average = fixed_point_average(t.price for t in ticks)
        logger.debug("Calculated %d-period moving average for %s: %s", periods, symbol, average)
        return MovingAverageResult(symbol=symbol, periods=periods, average=average, data_points_used=len(ticks))
