import hashlib
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Iterable, List, Optional

from dateutil import parser as date_parser

from services.ingestor.app.categorize import Categorizer
from shared.app_logging.logger import get_logger
from shared.schemas.messages import NormalizedItem, RawItem

logger = get_logger("ingestor.normalize")

ID_LENGTH = 16


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:ID_LENGTH]


def make_article_id(raw: RawItem) -> str:
    """
    Stable id for a feed entry: hash of the guid, else the link, else title + date.
    The same logical item gets the same id on every run.
    """
    guid = (raw.guid or "").strip()
    if guid:
        return _hash(guid)
    link = (raw.link or "").strip()
    if link:
        return _hash(link)
    return _hash(f"{raw.title or ''}:{raw.published or raw.iso_date or ''}")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(ts_raw: Optional[str]) -> Optional[datetime]:
    """
    Try ISO8601 first, then RFC 822 dates, then a lenient parse.
    Returns an aware UTC datetime, or None if nothing matches.
    """
    if not isinstance(ts_raw, str) or not ts_raw.strip():
        return None
    ts_raw = ts_raw.strip()

    # ISO: "2025-07-16T20:54:01+00:00" or "2025-07-16T20:54:01Z"
    try:
        return _as_utc(datetime.fromisoformat(ts_raw.replace("Z", "+00:00")))
    except ValueError:
        pass

    # RFC: "Wed, 16 Jul 2025 20:54:01 +0000"
    try:
        return _as_utc(parsedate_to_datetime(ts_raw))
    except (TypeError, ValueError, IndexError):
        pass

    # Loose: "July 16, 2025 8:54 PM EST"
    try:
        return _as_utc(date_parser.parse(ts_raw))
    except (ValueError, OverflowError):
        return None


class Normalizer:
    """Turns raw feed entries into canonical records; entries without title or link are dropped."""

    def __init__(self, categorizer: Categorizer, clock: Callable[[], datetime] = None):
        self.categorizer = categorizer
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_published_at(self, raw: RawItem) -> datetime:
        return parse_timestamp(raw.iso_date) or parse_timestamp(raw.published) or self._clock()

    def normalize(self, raw: RawItem, source: str, content_type: str = "policy") -> Optional[NormalizedItem]:
        title = (raw.title or "").strip()
        link = (raw.link or "").strip()
        if not title or not link:
            logger.warning(f"[{source}] Skipping item without title or link: title={title[:60]!r} link={link!r}")
            return None

        excerpt = (raw.snippet or raw.content or "").strip() or None
        return NormalizedItem(
            id=make_article_id(raw),
            title=title,
            link=link,
            published_at=self.resolve_published_at(raw),
            source=source,
            category=self.categorizer.categorize(title, excerpt),
            content_type=content_type,
            excerpt=excerpt,
        )

    def normalize_many(self, raw_items: Iterable[RawItem], source: str, content_type: str = "policy") -> List[NormalizedItem]:
        items = []
        for raw in raw_items:
            item = self.normalize(raw, source, content_type)
            if item is not None:
                items.append(item)
        return items
