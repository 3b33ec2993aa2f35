import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

SYMBOL_PATTERN = re.compile(r"[A-Z]{1,10}")
PRICE_DECIMAL_PLACES = 6
PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_DECIMAL_PLACES)


def normalize_symbol(raw: Optional[str]) -> str:
    """Uppercase and strip a user supplied ticker"""
    return (raw or "").strip().upper()


def is_storable_symbol(symbol) -> bool:
    return isinstance(symbol, str) and SYMBOL_PATTERN.fullmatch(symbol) is not None


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_price(value) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid price: {value!r}") from e


class Tick(BaseModel):
    """A single stored price observation, identified by (symbol, timestamp)"""
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    timestamp: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("symbol")
    @classmethod
    def _check_symbol(cls, value: str) -> str:
        if not is_storable_symbol(value):
            raise ValueError("Symbol must be 1-10 uppercase letters")
        return value

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value):
        return to_price(value)

    @field_validator("price")
    @classmethod
    def _check_price(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value <= 0:
            raise ValueError("Price must be a positive number")
        return value

    @field_validator("timestamp", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @property
    def price_str(self) -> str:
        return f"{self.price:f}"


class Quote(BaseModel):
    """Normalized quote source payload"""
    symbol: str
    current_price: float
    change: Optional[float] = None
    change_percent: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    open: Optional[float] = None
    previous_close: Optional[float] = None
    timestamp: Optional[datetime] = None
    source: str = "finnhub"


class MovingAverageResult(BaseModel):
    symbol: str
    periods: int
    average: Optional[str] = None
    data_points_used: int
