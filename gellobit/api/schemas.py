from typing import Optional
from pydantic import BaseModel, Field

from gellobit.schemas import BatchResult, CleanupResult, ClearDuplicatesResult, ExpirationStats, RunResult

__all__ = [
    "BatchResult", "CleanupResult", "ClearDuplicatesResult", "ExpirationStats", "RunResult",
    "ReactivateResponse", "TrimLogsRequest", "TrimLogsResponse",
]


class ReactivateResponse(BaseModel):
    feed_id: int
    reactivated: bool


class TrimLogsRequest(BaseModel):
    max_entries: Optional[int] = Field(default=None, ge=0)
    max_age_days: Optional[int] = Field(default=None, ge=1)


class TrimLogsResponse(BaseModel):
    deleted: int
