from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from sqlalchemy import select

from gellobit.db import init_db, SessionLocal, session_scope
from gellobit.db import deduplication, update_feed
from gellobit.db.deduplication import is_duplicate
from gellobit.db.models import FeedSource
from gellobit.db.save_opportunities import publish
from gellobit.db.settings_store import Settings, load_settings
from gellobit.errors import AIRejected, AIUnavailable, ConfigurationError, FetchError, PersistenceError
from gellobit.logging_config import setup_logging
from gellobit.schemas import BatchResult, BatchSummary, ClearDuplicatesResult, RunResult
from gellobit.scrapers.feed_fetcher import FeedFetcher
from gellobit.scrapers.page_scraper import PageScraper
from gellobit.utils.extractors import strip_html
from gellobit.utils.llm.llm_client import LLMClient, build_client
from gellobit.utils.llm.llm_pipeline import evaluate, build_policy
from gellobit.utils.notifications import get_notification_sink
from gellobit.utils.storage import BlobStore, get_blob_store

logger = logging.getLogger(__name__)


def make_fetcher(settings: Settings) -> FeedFetcher:
    return FeedFetcher(
        timeout=settings.get("feeds.request_timeout", 30),
        user_agent=settings.get("scraping.user_agent", ""),
        follow_google_redirects=settings.get("scraping.follow_google_redirects", True),
    )


def make_scraper(settings: Settings) -> PageScraper:
    return PageScraper(
        timeout=settings.get("scraping.request_timeout", 15),
        user_agent=settings.get("scraping.user_agent", ""),
        min_content_length=settings.get("scraping.min_content_length", 100),
        max_content_length=settings.get("scraping.max_content_length", 50000),
        follow_google_redirects=settings.get("scraping.follow_google_redirects", True),
    )


def _failed(result: RunResult, message: str, started: float) -> RunResult:
    result.success = False
    result.error = message
    result.execution_time_ms = int((time.monotonic() - started) * 1000)
    return result


def process_feed(
    feed_id: int,
    fetcher: Optional[FeedFetcher] = None,
    scraper: Optional[PageScraper] = None,
    client: Optional[LLMClient] = None,
    notify: Optional[Callable[[dict], None]] = None,
    blob_store: Optional[BlobStore] = None,
) -> RunResult:
    """Fetch -> dedup -> scrape -> AI gate -> publish for one feed.

    Component failures become counters on the RunResult; only a missing feed,
    a concurrent run, a configuration error or a fetch failure fail the run.
    """
    started = time.monotonic()
    result = RunResult(feed_id=feed_id)

    with SessionLocal() as db:
        feed = db.get(FeedSource, feed_id)
        if feed is None:
            return _failed(result, "Feed not found", started)
        result.feed_name = feed.name
        if feed.status == "error":
            return _failed(result, "Feed is in error state; reactivate it first", started)
        settings = load_settings(db)

    with session_scope() as db:
        claimed_at = update_feed.claim_feed(db, feed_id, int(settings.get("feeds.processing_lock_ttl_seconds", 1800)))
    if claimed_at is None:
        logger.info("Feed %s is already being processed; skipping.", feed_id)
        return _failed(result, "already running", started)

    released = False
    try:
        # cursor and policy as left by whichever run held the claim last
        with SessionLocal() as db:
            feed = db.get(FeedSource, feed_id)
        if feed is None:
            return _failed(result, "Feed not found", started)
        if feed.status == "error":
            return _failed(result, "Feed is in error state; reactivate it first", started)

        policy = None
        if feed.enable_ai_processing:
            with SessionLocal() as db:
                policy = build_policy(db, feed, settings)
            client = client or build_client(policy.provider, max_retries=policy.max_retries)

        fetcher = fetcher or make_fetcher(settings)
        max_posts = int(settings.get("general.max_posts_per_run", 10))
        try:
            fetched = fetcher.scrape(feed, offset=feed.url_list_offset or 0, max_items=max_posts)
        except FetchError as e:
            max_errors = int(settings.get("feeds.max_consecutive_errors", 5))
            with session_scope() as db:
                disabled = update_feed.record_fetch_failure(db, feed_id, str(e), max_errors, claimed_at)
            released = True
            logger.error("Fetch failed for feed %s: %s", feed.name, e, extra={"feed_id": feed_id, "event": "fetch_error"})
            if disabled:
                logger.error(
                    "Feed %s disabled after %d consecutive fetch errors", feed_id, max_errors,
                    extra={"feed_id": feed_id, "event": "feed_auto_error"},
                )
            return _failed(result, str(e), started)

        with session_scope() as db:
            update_feed.set_processing_status(db, feed_id, "processing", claimed_at)

        if feed.enable_scraping:
            scraper = scraper or make_scraper(settings)
        else:
            scraper = None
        if notify is None:
            notify = get_notification_sink()
        if blob_store is None:
            blob_store = get_blob_store()
        cross_feed = bool(settings.get("dedup.cross_feed", False))
        max_run_seconds = float(settings.get("feeds.max_run_seconds", 0) or 0)

        consumed = 0
        for item in fetched.items:
            if max_run_seconds and time.monotonic() - started > max_run_seconds:
                logger.warning(
                    "Feed %s hit the %ss run limit after %d items", feed.name, max_run_seconds, consumed,
                    extra={"feed_id": feed_id, "event": "run_deadline"},
                )
                break
            with session_scope() as db:
                claimed_at = update_feed.refresh_claim(db, feed_id, claimed_at)
            if claimed_at is None:
                break
            consumed += 1
            result.items_processed += 1

            try:
                with SessionLocal() as db:
                    if is_duplicate(db, feed_id, item.identity_key, cross_feed, feed.allow_republishing):
                        result.duplicates_skipped += 1
                        continue

                if policy is None:
                    logger.debug("AI processing disabled for feed %s; skipping %s", feed_id, item.link)
                    continue

                body = strip_html(item.raw_content)
                scraped = None
                if scraper is not None:
                    scraped = scraper.scrape(item.link)
                    if scraped is None:
                        result.scrape_failures += 1
                        logger.info("Scrape yielded nothing for %s; using feed content", item.link)
                    else:
                        body = scraped.text

                verdict = evaluate(item.title, body, item.link, policy, client=client)
                outcome = publish(
                    feed, item, verdict, settings,
                    scraped_image=scraped.image if scraped else None,
                    blob_store=blob_store,
                    notify=notify,
                )
                if outcome is None:
                    result.duplicates_skipped += 1
                elif outcome.entity_type == "post":
                    result.posts_created += 1
                else:
                    result.opportunities_created += 1
            except AIRejected as e:
                result.ai_rejections += 1
                logger.info(
                    "AI rejected '%s': %s", item.title, e.reason,
                    extra={"feed_id": feed_id, "event": "ai_rejected"},
                )
            except AIUnavailable as e:
                result.ai_unavailable += 1
                logger.warning(
                    "AI unavailable for '%s': %s", item.title, e,
                    extra={"feed_id": feed_id, "event": "ai_unavailable"},
                )
            except PersistenceError as e:
                result.errors.append(str(e))
                logger.error("%s", e, extra={"feed_id": feed_id, "event": "persistence_error"})
            except Exception as e:
                result.errors.append(f"{item.link}: {e}")
                logger.error(f"Unexpected error on {item.link}: {e}", exc_info=True, extra={"feed_id": feed_id})

        if claimed_at is not None:
            with session_scope() as db:
                if not update_feed.finish_run(db, feed_id, fetched.offset + consumed, claimed_at):
                    claimed_at = None
        released = True
        if claimed_at is None:
            logger.warning(
                "Feed %s was taken over by another run after %d items; cursor left unchanged", feed.name, consumed,
                extra={"feed_id": feed_id, "event": "claim_lost"},
            )
            return _failed(result, "processing claim lost", started)
    except ConfigurationError as e:
        logger.error("Configuration error for feed %s: %s", feed.name, e, extra={"feed_id": feed_id, "event": "config_error"})
        return _failed(result, str(e), started)
    finally:
        if not released and claimed_at is not None:
            with session_scope() as db:
                update_feed.set_processing_status(db, feed_id, "idle", claimed_at)

    result.execution_time_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Feed '%s' done: processed=%d created=%d posts=%d duplicates=%d rejected=%d ai_unavailable=%d errors=%d",
        feed.name, result.items_processed, result.opportunities_created, result.posts_created,
        result.duplicates_skipped, result.ai_rejections, result.ai_unavailable, len(result.errors),
        extra={"feed_id": feed_id, "event": "run_finished"},
    )
    return result


def summarize(results: List[RunResult]) -> BatchSummary:
    summary = BatchSummary(feeds_processed=len(results))
    for r in results:
        if r.success:
            summary.successful_feeds += 1
        else:
            summary.failed_feeds += 1
        summary.opportunities_created += r.opportunities_created
        summary.posts_created += r.posts_created
        summary.duplicates_skipped += r.duplicates_skipped
        summary.ai_rejections += r.ai_rejections
        summary.ai_unavailable += r.ai_unavailable
        summary.errors += len(r.errors) + (1 if r.error else 0)
    return summary


def process_all_feeds(force: bool = False, max_workers: Optional[int] = None, **collaborators) -> BatchResult:
    """Run every active, due feed (all active feeds when force=True) on a bounded pool."""
    with SessionLocal() as db:
        settings = load_settings(db)
        feeds = db.execute(
            select(FeedSource)
            .where(FeedSource.status == "active")
            .order_by(FeedSource.priority.desc(), FeedSource.id)
        ).scalars().all()

    due = [f for f in feeds if force or update_feed.is_due(f)]
    logger.info(f"Processing {len(due)} of {len(feeds)} active feeds (force={force})")
    if not due:
        return BatchResult(results=[], summary=summarize([]))

    workers = max(1, int(max_workers or settings.get("feeds.max_concurrency", 3)))
    by_id = {}
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(process_feed, f.id, **collaborators): f for f in due}
        for future in as_completed(futures):
            feed = futures[future]
            try:
                by_id[feed.id] = future.result()
            except Exception as e:
                logger.error(f"Feed '{feed.name}' crashed: {e}", exc_info=True)
                by_id[feed.id] = RunResult(feed_id=feed.id, feed_name=feed.name, success=False, error=str(e))

    results = [by_id[f.id] for f in due]
    summary = summarize(results)
    logger.info("Batch summary: %s", summary.model_dump())
    return BatchResult(results=results, summary=summary)


def reactivate_feed(feed_id: int) -> bool:
    with session_scope() as db:
        ok = update_feed.reactivate_feed(db, feed_id)
    if ok:
        logger.info("Feed %s reactivated", feed_id, extra={"feed_id": feed_id, "event": "feed_reactivated"})
    return ok


def clear_duplicates(feed_id: int) -> Optional[ClearDuplicatesResult]:
    with session_scope() as db:
        cleared = deduplication.clear_duplicates(db, feed_id)
    if cleared is not None:
        logger.info(
            "Cleared %d duplicate records for feed %s", cleared.entities_cleared, feed_id,
            extra={"feed_id": feed_id, "event": "duplicates_cleared"},
        )
    return cleared


if __name__ == "__main__":
    setup_logging(persist=True)
    init_db()
    batch = process_all_feeds()
    logger.info("Runner: processed %d feeds, created %d opportunities",
                batch.summary.feeds_processed, batch.summary.opportunities_created)
