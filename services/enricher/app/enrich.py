import random
import time
from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

import httpx

from services.enricher.app.extractors import DEFAULT_EXTRACTORS, Extractor, Page, extract_image
from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore
from shared.schemas.messages import EnrichmentFailure, EnrichmentStats, ImageResult
from shared.utils.deadline import Deadline
from shared.utils.metrics import IMAGES_ENRICHED

logger = get_logger("enricher.enrich")

DEFAULT_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
)
HTML_CONTENT_TYPES = ("text/html", "application/xhtml")


class ImageScraper:
    """Finds a representative image for one article page; fetch failures come back as results."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_html_chars: int = 100_000,
        extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS,
        user_agents: Sequence[str] = DEFAULT_USER_AGENTS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_html_chars = max_html_chars
        self.extractors = tuple(extractors)
        self.user_agents = tuple(user_agents)
        self._transport = transport

    def _headers(self) -> dict:
        return {
            "User-Agent": random.choice(self.user_agents),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    def scrape(self, url: str) -> ImageResult:
        if urlparse(url or "").scheme not in ("http", "https"):
            return ImageResult(success=False, error="Invalid protocol")

        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True, transport=self._transport) as client:
                response = client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            return ImageResult(success=False, error=f"{type(e).__name__}: {e}")

        if not response.is_success:
            return ImageResult(success=False, error=f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(kind in content_type for kind in HTML_CONTENT_TYPES):
            return ImageResult(success=False, error="Not HTML content")

        # Redirects change the base that relative image paths resolve against
        page = Page(response.text[: self.max_html_chars], str(response.url))
        image_url, extractor = extract_image(page, self.extractors)
        if image_url:
            logger.debug(f"Found image for {url[:60]} via {extractor}: {image_url[:80]}")
            return ImageResult(success=True, image_url=image_url, extractor=extractor)
        return ImageResult(success=False, error="No image found")


class ImageEnricher:
    """Backfills image_url for stored articles that have none, one page at a time."""

    def __init__(
        self,
        store: ArticleStore,
        scraper: ImageScraper,
        delay: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.scraper = scraper
        self.delay = delay
        self._sleep = sleep

    def enrich(self, url: str) -> ImageResult:
        return self.scraper.scrape(url)

    def enrich_missing(self, limit: int, deadline: Optional[Deadline] = None) -> EnrichmentStats:
        deadline = deadline or Deadline.unbounded()
        stats = EnrichmentStats()
        started = time.monotonic()
        articles = self.store.articles_missing_image(limit) if limit > 0 else []
        logger.info(f"Image enrichment: {len(articles)} article(s) without an image")

        for index, article in enumerate(articles):
            if deadline.expired():
                stats.skipped = len(articles) - index
                logger.warning(f"Time budget reached; {stats.skipped} article(s) left for the next run")
                break
            if index and self.delay:
                self._sleep(self.delay)

            stats.checked += 1
            try:
                result = self.enrich(article.link)
                if result.success and self.store.set_image_url(article.id, result.image_url):
                    stats.updated += 1
                    IMAGES_ENRICHED.labels(outcome="updated").inc()
                    continue
                reason = result.error or "Image already set"
            except Exception as e:
                logger.exception(f"Image enrichment crashed for {article.link[:60]}")
                reason = f"Unexpected error: {e}"

            stats.failed += 1
            stats.failures.append(EnrichmentFailure(source=article.source, link=article.link, reason=reason))
            IMAGES_ENRICHED.labels(outcome="failed").inc()
            logger.debug(f"No image for {article.link[:60]}: {reason}")

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"✅ Image enrichment: {stats.updated} updated, {stats.failed} failed, {stats.skipped} skipped")
        return stats
