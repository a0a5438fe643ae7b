from __future__ import annotations
import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_struct_time(st) -> Optional[datetime]:
    if not st:
        return None
    return datetime.fromtimestamp(calendar.timegm(st), tz=timezone.utc)


def parse_deadline(value) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "n/a", "not available", "ongoing"}:
        return None
    try:
        parsed = date_parser.parse(text)
    except (ValueError, OverflowError) as e:
        logger.debug("Unparseable deadline %r: %s", text, e)
        return None
    return as_utc(parsed)
