"""
Error taxonomy for the price checker core.

Every failure the core reports is a PriceCheckerError tagged with an
ErrorKind. Callers branch on ``err.kind`` instead of catching subclasses.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    INVALID_SYMBOL = "STOCK_001"
    PROVIDER_ERROR = "PROVIDER_001"
    PROVIDER_UNAUTHORIZED = "PROVIDER_002"
    PROVIDER_RATE_LIMITED = "PROVIDER_003"
    DUPLICATE_ENTRY = "DUPLICATE_PRICE_ENTRY"
    MONITORING_NOT_FOUND = "MONITORING_NOT_FOUND"
    MONITORING_CONFLICT = "MONITORING_CONFLICT"
    STOCK_DATA_NOT_FOUND = "STOCK_DATA_NOT_FOUND"

    @property
    def code(self) -> str:
        return self.value


# Raised by the quote provider; everything else comes from storage or the registry.
PROVIDER_KINDS = frozenset({
    ErrorKind.INVALID_SYMBOL,
    ErrorKind.PROVIDER_ERROR,
    ErrorKind.PROVIDER_UNAUTHORIZED,
    ErrorKind.PROVIDER_RATE_LIMITED,
})


class PriceCheckerError(Exception):

    def __init__(self, kind: ErrorKind, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.name, "code": self.kind.code, "message": self.message, **self.context}

    def __repr__(self):
        return f"PriceCheckerError({self.kind.name}, {self.message!r})"


def invalid_symbol(symbol: str, reason: Optional[str] = None) -> PriceCheckerError:
    context = {"symbol": symbol}
    if reason:
        context["reason"] = reason
    return PriceCheckerError(ErrorKind.INVALID_SYMBOL, f"Invalid stock symbol: {symbol}", context)


def provider_error(message: str, provider: Optional[str] = None) -> PriceCheckerError:
    suffix = f" ({provider})" if provider else ""
    return PriceCheckerError(
        ErrorKind.PROVIDER_ERROR,
        f"Stock data provider error{suffix}: {message}",
        {"provider": provider},
    )


def provider_unauthorized(provider: Optional[str] = None) -> PriceCheckerError:
    suffix = f" for {provider}" if provider else ""
    return PriceCheckerError(
        ErrorKind.PROVIDER_UNAUTHORIZED,
        f"Invalid or missing API key{suffix}",
        {"provider": provider},
    )


def provider_rate_limited(provider: Optional[str] = None) -> PriceCheckerError:
    suffix = f" for {provider}" if provider else ""
    return PriceCheckerError(
        ErrorKind.PROVIDER_RATE_LIMITED,
        f"Rate limit exceeded{suffix}",
        {"provider": provider},
    )


def duplicate_entry(symbol: str, instant: datetime) -> PriceCheckerError:
    return PriceCheckerError(
        ErrorKind.DUPLICATE_ENTRY,
        f"Stock price entry already exists for symbol {symbol} at {instant.isoformat()}",
        {"symbol": symbol, "timestamp": instant.isoformat()},
    )


def monitoring_not_found(symbol: str) -> PriceCheckerError:
    return PriceCheckerError(
        ErrorKind.MONITORING_NOT_FOUND,
        f"No monitoring configuration found for symbol '{symbol}'",
        {"symbol": symbol},
    )


def monitoring_conflict(symbol: str) -> PriceCheckerError:
    return PriceCheckerError(
        ErrorKind.MONITORING_CONFLICT,
        f"Monitoring configuration already exists for symbol '{symbol}'",
        {"symbol": symbol},
    )


def stock_data_not_found(symbol: str) -> PriceCheckerError:
    return PriceCheckerError(
        ErrorKind.STOCK_DATA_NOT_FOUND,
        f"No stock data found for symbol: {symbol}",
        {"symbol": symbol},
    )
