from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, StrictBool, field_validator


class CandidateItem(BaseModel):
    source_feed_id: int
    identity_key: str
    link: str
    title: str
    raw_content: str = ""
    image_url: Optional[str] = None
    published_at: Optional[datetime] = None


class FetchResult(BaseModel):
    items: List[CandidateItem]
    total_available: int
    offset: int
    next_offset: int


class ScrapedPage(BaseModel):
    title: str = ""
    description: str = ""
    text: str
    html: str = ""
    image: Optional[str] = None


class RawVerdict(BaseModel):
    """Shape the model is asked to return. Validation failures mean a malformed reply."""

    valid: StrictBool
    reason: Optional[str] = None
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    deadline: Optional[str] = None
    prize_value: Optional[str] = None
    requirements: Optional[str] = None
    location: Optional[str] = None
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("title", "excerpt", "content", "deadline", "prize_value", "requirements", "location", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, list):
            return "\n".join(str(x) for x in v)
        return v


class Verdict(BaseModel):
    """An accepted, cleaned verdict ready for publication."""

    title: str
    excerpt: str
    content: str
    confidence_score: float
    deadline: Optional[datetime] = None
    prize_value: Optional[str] = None
    requirements: Optional[str] = None
    location: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class RunResult(BaseModel):
    feed_id: int
    feed_name: Optional[str] = None
    success: bool = True
    items_processed: int = 0
    opportunities_created: int = 0
    posts_created: int = 0
    duplicates_skipped: int = 0
    ai_rejections: int = 0
    ai_unavailable: int = 0
    scrape_failures: int = 0
    errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    execution_time_ms: int = 0


class BatchSummary(BaseModel):
    feeds_processed: int = 0
    successful_feeds: int = 0
    failed_feeds: int = 0
    opportunities_created: int = 0
    posts_created: int = 0
    duplicates_skipped: int = 0
    ai_rejections: int = 0
    ai_unavailable: int = 0
    errors: int = 0


class BatchResult(BaseModel):
    results: List[RunResult]
    summary: BatchSummary


class ClearDuplicatesResult(BaseModel):
    entities_cleared: int
    offset_reset: bool


class CleanupResult(BaseModel):
    deleted_count: int = 0
    deleted_by_type: Dict[str, int] = Field(default_factory=dict)
    skipped_evergreen: int = 0
    errors: List[str] = Field(default_factory=list)


class ExpirationStats(BaseModel):
    expired_count: int
    expiring_in_7_days: int
    expiring_in_30_days: int
    no_deadline_count: int
