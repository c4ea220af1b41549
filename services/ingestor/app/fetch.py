import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import feedparser
import httpx
from bs4 import BeautifulSoup

from shared.app_logging.logger import get_logger
from shared.schemas.messages import FeedDescriptor, FeedFetchResult, FetchDiagnostics, RawItem
from shared.utils.metrics import FEEDS_FETCHED

logger = get_logger("ingestor.fetch")

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; EnergyIntelBot/1.0; +https://github.com/energy-intel)"
FEED_ACCEPT = "application/rss+xml, application/xml, application/atom+xml, text/xml, */*"
PREVIEW_CHARS = 500


def html_to_text(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    text = BeautifulSoup(value, "html.parser").get_text(" ", strip=True)
    return text or None


def entry_to_raw_item(entry: Any) -> RawItem:
    """Map one feedparser entry onto a RawItem."""
    iso_date = None
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        iso_date = datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()

    content = None
    blocks = entry.get("content") or []
    if blocks:
        content = blocks[0].get("value")

    description = entry.get("summary") or entry.get("description")
    return RawItem(
        title=entry.get("title"),
        link=entry.get("link"),
        published=entry.get("published") or entry.get("updated"),
        iso_date=iso_date,
        content=content,
        snippet=html_to_text(description) or html_to_text(content),
        guid=entry.get("id") or entry.get("guid"),
    )


def looks_like_html(body: str) -> bool:
    head = body.lstrip("\ufeff \t\r\n")[:100].lower()
    return head.startswith(("<!doctype", "<html"))


class FeedFetcher:
    """
    Fetches and parses feeds. ``fetch`` never raises: every failure comes back
    as a result with zero items, an error string and diagnostics.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent, "Accept": FEED_ACCEPT},
            transport=self._transport,
        )

    async def fetch_async(self, feed: FeedDescriptor, client: Optional[httpx.AsyncClient] = None) -> FeedFetchResult:
        if client is None:
            async with self._client() as own_client:
                return await self.fetch_async(feed, own_client)

        result = FeedFetchResult(source=feed.name, url=feed.address, content_type=feed.content_type)
        diagnostics = result.diagnostics
        try:
            # httpx timeouts are per operation; bound the whole exchange as well
            response = await asyncio.wait_for(client.get(feed.address), timeout=self.timeout)
            body = response.text
            diagnostics.http_status = response.status_code
            diagnostics.content_type = response.headers.get("content-type")
            diagnostics.response_preview = body[:PREVIEW_CHARS]

            if not response.is_success:
                result.error = f"HTTP {response.status_code}: {response.reason_phrase}"
            elif looks_like_html(body):
                result.error = "Response is HTML, not XML/RSS (possible bot protection or redirect)"
            else:
                parsed = feedparser.parse(response.content)
                if parsed.bozo and not parsed.entries:
                    diagnostics.parse_error = str(parsed.get("bozo_exception") or "unrecognized feed format")
                    result.error = f"Parse error: {diagnostics.parse_error}"
                else:
                    result.items = [entry_to_raw_item(entry) for entry in parsed.entries]
        except asyncio.TimeoutError:
            result.error = f"Timeout after {self.timeout:g}s"
        except httpx.HTTPError as e:
            result.error = f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.exception(f"Unexpected error fetching {feed.name}")
            result.error = f"Unexpected error: {e}"

        if result.error:
            FEEDS_FETCHED.labels(outcome="error").inc()
            logger.warning(f"❌ [{feed.name}] {result.error}")
        else:
            FEEDS_FETCHED.labels(outcome="success").inc()
            logger.info(f"✅ [{feed.name}] {len(result.items)} items")
        return result

    async def fetch_all_async(self, feeds: Sequence[FeedDescriptor]) -> List[FeedFetchResult]:
        """Fetch every feed concurrently; one feed's failure never affects another."""
        if not feeds:
            return []
        async with self._client() as client:
            outcomes = await asyncio.gather(
                *(self.fetch_async(feed, client) for feed in feeds),
                return_exceptions=True,
            )

        results = []
        for feed, outcome in zip(feeds, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"❌ [{feed.name}] fetch task crashed: {outcome}")
                outcome = FeedFetchResult(
                    source=feed.name,
                    url=feed.address,
                    content_type=feed.content_type,
                    error=f"Unexpected error: {outcome}",
                )
            results.append(outcome)
        return results

    # Blocking entry points; call from threads without a running event loop.
    def fetch(self, feed: FeedDescriptor) -> FeedFetchResult:
        return asyncio.run(self.fetch_async(feed))

    def fetch_all(self, feeds: Sequence[FeedDescriptor]) -> List[FeedFetchResult]:
        return asyncio.run(self.fetch_all_async(feeds))

    def fetch_sequential(self, feeds: Sequence[FeedDescriptor], delay: float = 0.5) -> List[FeedFetchResult]:
        """One feed at a time with a pause in between; slower, but easier to debug."""
        results = []
        for index, feed in enumerate(feeds):
            if index and delay:
                time.sleep(delay)
            results.append(self.fetch(feed))
        return results


def fetch_stats(results: Sequence[FeedFetchResult]) -> Dict[str, Any]:
    failed = [r for r in results if not r.ok]
    return {
        "total_feeds": len(results),
        "successful_feeds": len(results) - len(failed),
        "failed_feeds": len(failed),
        "total_items": sum(len(r.items) for r in results),
        "errors": [f"{r.source}: {r.error}" for r in failed],
        "per_source": [
            {
                "name": r.source,
                "status": "success" if r.ok else "error",
                "item_count": len(r.items),
                "error": r.error,
                "http_status": r.diagnostics.http_status,
                "content_type": r.diagnostics.content_type,
            }
            for r in results
        ],
    }
