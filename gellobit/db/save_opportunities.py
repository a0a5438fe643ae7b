from __future__ import annotations
import logging
import secrets
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gellobit.db.database import SessionLocal
from gellobit.db.deduplication import record_duplicate
from gellobit.db.models import BlogPost, FeedSource, MediaFile, Opportunity
from gellobit.db.settings_store import Settings
from gellobit.db.update_feed import increment_counters
from gellobit.errors import PersistenceError
from gellobit.schemas import CandidateItem, Verdict
from gellobit.utils.dates import utcnow
from gellobit.utils.extractors import slugify
from gellobit.utils.storage import BlobStore, download_image, storage_path_for

logger = logging.getLogger(__name__)

SLUG_ATTEMPTS = 3


class PublishOutcome(BaseModel):
    entity_id: int
    entity_type: str  # opportunity | post
    slug: str
    status: str


class _DuplicateMarker(Exception):
    pass


def unique_slug(db: Session, model, base: str) -> str:
    taken = set(db.execute(
        select(model.slug).where(or_(model.slug == base, model.slug.like(f"{base}-%")))
    ).scalars())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def decide_status(feed: FeedSource, verdict: Verdict, settings: Settings) -> str:
    auto_publish = feed.auto_publish
    if auto_publish is None:
        auto_publish = bool(settings.get("general.auto_publish", False))
    min_confidence = float(settings.get("general.auto_publish_min_confidence", 0.0))
    if auto_publish and verdict.confidence_score >= min_confidence:
        return "published"
    return "draft"


def choose_featured_image(feed: FeedSource, candidate: CandidateItem, scraped_image: Optional[str] = None) -> Optional[str]:
    return candidate.image_url or scraped_image or feed.fallback_featured_image_url


def _mirror_image(store: BlobStore, image_url: str):
    try:
        data, content_type = download_image(image_url)
        path = storage_path_for(image_url, content_type)
        return store.upload(path, data, content_type), path, content_type
    except Exception as e:
        logger.warning(f"Image mirroring failed for {image_url}, keeping remote url: {e}")
        return None


def _insert(db: Session, feed: FeedSource, candidate: CandidateItem, verdict: Verdict,
            status: str, image_url: Optional[str], slug_suffix: str):
    now = utcnow()
    is_post = feed.output_type == "blog_post"
    model = BlogPost if is_post else Opportunity
    base = slugify(verdict.title) + slug_suffix
    llm_info = {"provider": verdict.provider, "model": verdict.model, "verdict": verdict.raw}

    common = dict(
        slug=unique_slug(db, model, base),
        title=verdict.title,
        excerpt=verdict.excerpt,
        content=verdict.content,
        status=status,
        featured_image_url=image_url,
        source_url=candidate.link,
        source_feed_id=feed.id,
        llm_info=llm_info,
        published_at=now if status == "published" else None,
    )
    if is_post:
        entity = BlogPost(**common)
    else:
        entity = Opportunity(
            **common,
            opportunity_type=feed.opportunity_type,
            deadline=verdict.deadline,
            prize_value=verdict.prize_value,
            requirements=verdict.requirements,
            location=verdict.location,
            confidence_score=verdict.confidence_score,
        )
    db.add(entity)
    db.flush()
    return entity, ("post" if is_post else "opportunity")


def publish(
    feed: FeedSource,
    candidate: CandidateItem,
    verdict: Verdict,
    settings: Settings,
    scraped_image: Optional[str] = None,
    blob_store: Optional[BlobStore] = None,
    notify: Optional[Callable[[dict], None]] = None,
) -> Optional[PublishOutcome]:
    """Insert the entity, its dedup marker and the feed counter bump in one transaction.

    Returns None when a concurrent run already recorded the identity key.
    """
    status = decide_status(feed, verdict, settings)
    image_url = choose_featured_image(feed, candidate, scraped_image)

    mirrored = None
    if image_url and blob_store is not None and settings.get("media.mirror_featured_images", False):
        mirrored = _mirror_image(blob_store, image_url)
        if mirrored:
            image_url = mirrored[0]

    suffix = ""
    for attempt in range(1, SLUG_ATTEMPTS + 1):
        db = SessionLocal()
        stage = "entity"
        try:
            with db.begin():
                entity, entity_type = _insert(db, feed, candidate, verdict, status, image_url, suffix)
                stage = "dedup"
                record_duplicate(
                    db, feed.id, candidate.identity_key, entity.id,
                    entity_type=entity_type, title=verdict.title, allow_repeat=feed.allow_republishing,
                )
                if mirrored:
                    db.add(MediaFile(
                        entity_type=entity_type, entity_id=entity.id,
                        storage_path=mirrored[1], url=mirrored[0], content_type=mirrored[2],
                    ))
                increment_counters(db, feed.id, processed=1, published=1 if status == "published" else 0)
                outcome = PublishOutcome(entity_id=entity.id, entity_type=entity_type, slug=entity.slug, status=status)
        except IntegrityError as e:
            if stage == "dedup":
                logger.info(f"⏭️ Skipped duplicate: '{verdict.title}' ({candidate.identity_key}) recorded concurrently.")
                _discard_mirror(blob_store, mirrored)
                return None
            logger.warning(f"Slug conflict for '{verdict.title}' (attempt {attempt}/{SLUG_ATTEMPTS}): {e.orig}")
            suffix = "-" + secrets.token_hex(3)
            continue
        except SQLAlchemyError as e:
            _discard_mirror(blob_store, mirrored)
            raise PersistenceError(f"Failed to publish '{verdict.title}': {e}") from e
        finally:
            db.close()

        logger.info(
            "Created %s %s '%s' (%s)", entity_type, outcome.entity_id, verdict.title, status,
            extra={"feed_id": feed.id, "event": "published" if status == "published" else "drafted"},
        )
        if notify is not None and status == "published":
            try:
                notify({
                    "id": outcome.entity_id,
                    "entity_type": entity_type,
                    "slug": outcome.slug,
                    "title": verdict.title,
                    "opportunity_type": feed.opportunity_type,
                    "feed_id": feed.id,
                })
            except Exception as e:
                logger.warning(f"Notification sink failed for {entity_type} {outcome.entity_id}: {e}")
        return outcome

    _discard_mirror(blob_store, mirrored)
    raise PersistenceError(f"Could not allocate a unique slug for '{verdict.title}'")


def _discard_mirror(blob_store: Optional[BlobStore], mirrored) -> None:
    if blob_store is None or not mirrored:
        return
    try:
        blob_store.remove(mirrored[1])
    except Exception as e:
        logger.warning(f"Could not remove orphaned blob {mirrored[1]}: {e}")
