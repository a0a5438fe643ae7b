from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB

from gellobit.db.database import Base
from gellobit.utils.dates import utcnow

# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")

OPPORTUNITY_TYPES = (
    "contest",
    "giveaway",
    "sweepstakes",
    "dream_job",
    "get_paid_to",
    "instant_win",
    "job_fair",
    "scholarship",
    "volunteer",
    "free_training",
    "promo",
    "evergreen",
)


class FeedSource(Base):
    __tablename__ = "rss_feeds"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    url = Column(String, unique=True, nullable=False)
    opportunity_type = Column(String, nullable=False, default="giveaway")
    output_type = Column(String, nullable=False, default="opportunity")  # opportunity | blog_post
    status = Column(String, nullable=False, default="active")  # active | inactive | error

    enable_scraping = Column(Boolean, nullable=False, default=True)
    enable_ai_processing = Column(Boolean, nullable=False, default=True)
    auto_publish = Column(Boolean, nullable=True)  # None -> general.auto_publish
    ai_provider = Column(String, nullable=True)
    ai_model = Column(String, nullable=True)
    quality_threshold = Column(Float, nullable=True)  # None -> general.quality_threshold
    priority = Column(Integer, nullable=False, default=0)
    cron_interval = Column(String, nullable=False, default="hourly")
    allow_republishing = Column(Boolean, nullable=False, default=False)
    fallback_featured_image_url = Column(String, nullable=True)

    total_processed = Column(Integer, nullable=False, default=0)
    total_published = Column(Integer, nullable=False, default=0)
    url_list_offset = Column(Integer, nullable=False, default=0)
    last_fetched = Column(DateTime(timezone=True), nullable=True)
    processing_status = Column(String, nullable=False, default="idle")  # idle | fetching | processing
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class DuplicateRecord(Base):
    __tablename__ = "duplicate_tracking"

    id = Column(Integer, primary_key=True, index=True)
    feed_id = Column(Integer, ForeignKey("rss_feeds.id", ondelete="SET NULL"), nullable=True, index=True)
    entity_id = Column(Integer, nullable=True, index=True)
    entity_type = Column(String, nullable=False, default="opportunity")  # opportunity | post
    identity_key = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    # rows written for feeds with allow_republishing stay outside the unique index
    allow_repeat = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "uq_duplicate_feed_identity",
            "feed_id",
            "identity_key",
            unique=True,
            postgresql_where=text("allow_repeat = false"),
            sqlite_where=text("allow_repeat = 0"),
        ),
    )


class Opportunity(Base):
    __tablename__ = "opportunities"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, nullable=False)
    title = Column(String, nullable=False)
    excerpt = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    opportunity_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="draft")  # draft | published
    deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    prize_value = Column(String, nullable=True)
    requirements = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    featured_image_url = Column(String, nullable=True)
    source_url = Column(String, nullable=True)
    source_feed_id = Column(Integer, ForeignKey("rss_feeds.id", ondelete="SET NULL"), nullable=True, index=True)
    confidence_score = Column(Float, nullable=True)

    llm_info = Column(JSONType, nullable=True)  # provider | model | raw verdict

    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class BlogPost(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, nullable=False)
    title = Column(String, nullable=False)
    excerpt = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="draft")
    featured_image_url = Column(String, nullable=True)
    source_url = Column(String, nullable=True)
    source_feed_id = Column(Integer, ForeignKey("rss_feeds.id", ondelete="SET NULL"), nullable=True, index=True)
    llm_info = Column(JSONType, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Favorite(Base):
    __tablename__ = "user_favorites"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class MediaFile(Base):
    __tablename__ = "media_files"

    id = Column(Integer, primary_key=True)
    entity_type = Column(String, nullable=False, default="opportunity")
    entity_id = Column(Integer, nullable=False, index=True)
    storage_path = Column(String, nullable=False)
    url = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ProcessingLog(Base):
    __tablename__ = "processing_logs"

    id = Column(Integer, primary_key=True)
    level = Column(String, nullable=False)  # info | warn | error
    message = Column(Text, nullable=False)
    feed_id = Column(Integer, ForeignKey("rss_feeds.id", ondelete="SET NULL"), nullable=True, index=True)
    context = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(JSONType, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class AIProviderSetting(Base):
    __tablename__ = "ai_settings"

    id = Column(Integer, primary_key=True)
    provider = Column(String, unique=True, nullable=False)  # openai | deepseek | gemini | anthropic | ollama
    model = Column(String, nullable=False)
    api_key = Column(String, nullable=True)
    base_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    temperature = Column(Float, nullable=True)
    max_tokens = Column(Integer, nullable=True)
    timeout_seconds = Column(Integer, nullable=True)
