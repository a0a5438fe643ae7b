from __future__ import annotations
import json
import logging
from typing import Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from gellobit.db.models import OPPORTUNITY_TYPES, AIProviderSetting, FeedSource
from gellobit.db.settings_store import Settings
from gellobit.errors import AIRejected, AIUnavailable, ConfigurationError
from gellobit.schemas import RawVerdict, Verdict
from gellobit.utils.dates import parse_deadline
from gellobit.utils.extractors import (
    clip_title,
    sanitize_generated_html,
    strip_html,
    truncate_chars,
    truncate_words,
)
from gellobit.utils.llm.llm_client import (
    LLMClient,
    ProviderConfig,
    build_client,
    env_provider_config,
    extract_json_object,
)
from gellobit.utils.llm.prompts import build_content_digest, build_prompt

logger = logging.getLogger(__name__)

FREE_TEXT_LIMIT = 255


class GatePolicy(BaseModel):
    kind: str
    quality_threshold: float
    provider: ProviderConfig
    prompt_override: Optional[str] = None
    max_content_chars: int = 6000
    title_max_chars: int = 140
    excerpt_max_words: int = 20
    excerpt_max_chars: int = 160
    max_retries: int = 3


def _row_config(row: AIProviderSetting, settings: Settings, model: Optional[str] = None) -> ProviderConfig:
    return ProviderConfig(
        provider=row.provider,
        model=model or row.model,
        api_key=row.api_key,
        base_url=row.base_url,
        temperature=row.temperature if row.temperature is not None else settings.get("ai.temperature", 0.3),
        max_tokens=row.max_tokens or settings.get("ai.max_tokens", 2000),
        timeout=row.timeout_seconds or settings.get("ai.request_timeout", 60),
    )


def resolve_provider_config(db: Session, feed: FeedSource, settings: Settings) -> ProviderConfig:
    """Feed override first, then the active ai_settings row, then LLM_* env vars."""
    if feed.ai_provider and feed.ai_model:
        row = db.execute(
            select(AIProviderSetting).where(AIProviderSetting.provider == feed.ai_provider)
        ).scalar_one_or_none()
        if row is not None:
            return _row_config(row, settings, model=feed.ai_model)
        logger.warning(
            "Feed AI provider %s not configured in settings, falling back to global", feed.ai_provider,
            extra={"feed_id": feed.id, "event": "ai_provider_fallback"},
        )

    active = db.execute(
        select(AIProviderSetting).where(AIProviderSetting.is_active.is_(True)).order_by(AIProviderSetting.id)
    ).scalars().first()
    if active is not None:
        return _row_config(active, settings)

    env_config = env_provider_config()
    if env_config is not None:
        return env_config.model_copy(update={
            "temperature": settings.get("ai.temperature", 0.3),
            "max_tokens": settings.get("ai.max_tokens", 2000),
            "timeout": settings.get("ai.request_timeout", 60),
        })
    raise ConfigurationError("No active AI provider configured")


def build_policy(db: Session, feed: FeedSource, settings: Settings) -> GatePolicy:
    if feed.output_type not in ("opportunity", "blog_post"):
        raise ConfigurationError(f"Unknown output_type '{feed.output_type}'")
    kind = "blog_post" if feed.output_type == "blog_post" else feed.opportunity_type
    if kind != "blog_post" and kind not in OPPORTUNITY_TYPES:
        raise ConfigurationError(f"Unknown opportunity_type '{feed.opportunity_type}'")

    threshold = feed.quality_threshold
    if threshold is None:
        threshold = settings.get("general.quality_threshold", 0.7)
    threshold = float(threshold)
    if not 0.0 <= threshold <= 1.0:
        raise ConfigurationError(f"quality_threshold must be within [0, 1], got {threshold}")

    return GatePolicy(
        kind=kind,
        quality_threshold=threshold,
        provider=resolve_provider_config(db, feed, settings),
        prompt_override=settings.get(f"prompts.{kind}"),
        max_content_chars=settings.get("ai.max_content_chars", 6000),
        title_max_chars=settings.get("ai.title_max_chars", 140),
        excerpt_max_words=settings.get("ai.excerpt_max_words", 20),
        excerpt_max_chars=settings.get("ai.excerpt_max_chars", 160),
        max_retries=settings.get("ai.max_retries", 3),
    )


def _clip(value: Optional[str], limit: int = FREE_TEXT_LIMIT) -> Optional[str]:
    if value is None:
        return None
    value = strip_html(value)
    if not value or value.lower() in {"null", "none", "n/a"}:
        return None
    return truncate_chars(value, limit)


def parse_verdict(text: str, policy: GatePolicy) -> Verdict:
    """Validate a raw model reply against the verdict shape and the quality gate.

    Raises AIUnavailable for anything malformed and AIRejected for quality failures.
    The returned Verdict is complete; nothing partial escapes this function.
    """
    try:
        data = json.loads(extract_json_object(text))
    except json.JSONDecodeError as e:
        raise AIUnavailable(f"Malformed JSON from AI provider: {e}") from e
    if not isinstance(data, dict):
        raise AIUnavailable("AI reply is not a JSON object")

    try:
        raw = RawVerdict.model_validate(data)
    except ValidationError as e:
        raise AIUnavailable(f"AI verdict failed validation: {e.errors()[:3]}") from e

    if not raw.valid:
        raise AIRejected(raw.reason or "content judged invalid", raw.confidence_score)
    if not raw.title or not raw.title.strip() or not raw.content or not raw.content.strip():
        raise AIUnavailable("AI verdict marked valid but is missing title or content")
    if raw.confidence_score is None:
        raise AIUnavailable("AI verdict marked valid but has no confidence_score")
    if raw.confidence_score < policy.quality_threshold:
        raise AIRejected(
            f"confidence {raw.confidence_score:.3f} below threshold {policy.quality_threshold:.3f}",
            raw.confidence_score,
        )

    content = sanitize_generated_html(raw.content)
    title = clip_title(raw.title, policy.title_max_chars)
    if not content or not title:
        raise AIUnavailable("AI verdict has empty title or content after cleanup")

    excerpt = strip_html(raw.excerpt or "") or strip_html(content)
    excerpt = truncate_chars(truncate_words(excerpt, policy.excerpt_max_words), policy.excerpt_max_chars)

    return Verdict(
        title=title,
        excerpt=excerpt,
        content=content,
        confidence_score=raw.confidence_score,
        deadline=parse_deadline(raw.deadline),
        prize_value=_clip(raw.prize_value),
        requirements=strip_html(raw.requirements or "") or None,
        location=_clip(raw.location),
        provider=policy.provider.provider,
        model=policy.provider.model,
        raw=data,
    )


def evaluate(
    title: str,
    body: str,
    url: str,
    policy: GatePolicy,
    client: Optional[LLMClient] = None,
) -> Verdict:
    client = client or build_client(policy.provider, max_retries=policy.max_retries)
    digest = build_content_digest(title, body, url, max_chars=policy.max_content_chars)
    system_prompt, user_prompt = build_prompt(policy.kind, digest, override=policy.prompt_override)
    text = client.complete(system_prompt, user_prompt, policy.provider.model)
    return parse_verdict(text, policy)
