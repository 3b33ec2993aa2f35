from typing import Literal

from pydantic import BaseModel

DatabaseStatus = Literal["connected", "error"]
ExternalApiStatus = Literal["connected", "error"]


class HealthStatus(BaseModel):
    status: Literal["healthy", "unhealthy"]
    database: DatabaseStatus
    external_api: ExternalApiStatus
    uptime_ms: int
    environment: str

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"
