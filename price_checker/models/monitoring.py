from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from price_checker.models.tick import as_utc, is_storable_symbol


class MonitoringConfig(BaseModel):
    """Monitoring state of one symbol. Absent symbols simply have no config."""
    model_config = ConfigDict(frozen=True)

    id: int
    symbol: str
    is_active: bool
    last_fetch: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("symbol")
    @classmethod
    def _check_symbol(cls, value: str) -> str:
        if not is_storable_symbol(value):
            raise ValueError("Symbol must be 1-10 uppercase letters")
        return value

    @field_validator("last_fetch", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class StockData(BaseModel):
    symbol: str
    current_price: str
    last_updated: datetime
    moving_average: Optional[str] = None
    monitoring_status: bool = False
    last_fetch: Optional[datetime] = None
