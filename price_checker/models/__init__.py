from price_checker.models.health import HealthStatus
from price_checker.models.monitoring import MonitoringConfig, StockData
from price_checker.models.run import FetchRunSummary, SymbolResult
from price_checker.models.tick import (
    MovingAverageResult,
    Quote,
    Tick,
    is_storable_symbol,
    normalize_symbol,
)

__all__ = [
    "FetchRunSummary",
    "HealthStatus",
    "MonitoringConfig",
    "MovingAverageResult",
    "Quote",
    "StockData",
    "SymbolResult",
    "Tick",
    "is_storable_symbol",
    "normalize_symbol",
]
