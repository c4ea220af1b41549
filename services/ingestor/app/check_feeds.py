"""CLI entry point for checking feed health without touching the database."""

import argparse
import sys
from typing import List, Optional

from services.ingestor.app.categorize import load_category_rules
from services.ingestor.app.fetch import FeedFetcher, fetch_stats
from services.ingestor.app.normalize import Normalizer
from shared.app_logging.logger import setup_logging
from shared.config.feeds import load_feed_registry
from shared.config.settings import get_settings
from shared.schemas.messages import FeedFetchResult

logger = setup_logging("check_feeds")


def print_result(result: FeedFetchResult, normalizer: Normalizer, samples: int = 3) -> None:
    icon = "✅" if result.ok else "❌"
    print(f"{icon} {result.source} [{result.content_type}] {result.url}")
    if not result.ok:
        d = result.diagnostics
        print(f"    error: {result.error}")
        print(f"    http_status={d.http_status} content_type={d.content_type}")
        if d.response_preview:
            print(f"    preview: {d.response_preview[:200]!r}")
        return

    print(f"    {len(result.items)} item(s)")
    for item in normalizer.normalize_many(result.items[:samples], result.source, result.content_type):
        print(f"    - [{item.category}] {item.published_at:%Y-%m-%d} {item.title[:90]}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch feeds and print diagnostics")
    parser.add_argument("--all", action="store_true", help="include disabled feeds")
    parser.add_argument("--source", help="check a single feed by name")
    parser.add_argument("--sequential", action="store_true", help="fetch one feed at a time")
    args = parser.parse_args(argv)

    settings = get_settings().pipeline
    registry = load_feed_registry(settings.feed_registry_path)
    if args.source:
        feed = registry.by_name(args.source)
        if feed is None:
            logger.error(f"❌ No feed named {args.source!r}")
            return 2
        feeds = [feed]
    else:
        feeds = registry.all() if args.all else registry.enabled()

    fetcher = FeedFetcher(timeout=settings.feed_timeout, user_agent=settings.feed_user_agent)
    normalizer = Normalizer(load_category_rules(settings.category_rules_path))
    results = fetcher.fetch_sequential(feeds) if args.sequential else fetcher.fetch_all(feeds)

    for result in results:
        print_result(result, normalizer)

    stats = fetch_stats(results)
    print(
        f"\n{stats['successful_feeds']}/{stats['total_feeds']} feeds ok, "
        f"{stats['total_items']} items, {stats['failed_feeds']} failed"
    )
    return 1 if stats["failed_feeds"] else 0


if __name__ == "__main__":
    sys.exit(main())
