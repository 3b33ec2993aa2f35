from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class SymbolResult(BaseModel):
    symbol: str
    success: bool
    price: Optional[str] = None
    error: Optional[str] = None


class FetchRunSummary(BaseModel):
    started_at: datetime
    finished_at: datetime
    total: int = 0
    successful: int = 0
    failed: int = 0
    batches: List[int] = []
    failures: List[SymbolResult] = []
    error: Optional[str] = None

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    @classmethod
    def from_results(cls, started_at: datetime, finished_at: datetime,
                     results: List[SymbolResult], batches: List[int],
                     error: Optional[str] = None) -> "FetchRunSummary":
        failures = [r for r in results if not r.success]
        return cls(
            started_at=started_at,
            finished_at=finished_at,
            total=len(results),
            successful=len(results) - len(failures),
            failed=len(failures),
            batches=batches,
            failures=failures,
            error=error,
        )
