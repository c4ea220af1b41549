"""
Maintenance passes over already-stored articles: regenerate placeholder
summaries and rerun the categorizer after the keyword rules change.
"""

import time
from typing import Callable

from services.analyzer.summarize import Summarizer, is_likely_placeholder
from services.ingestor.app.categorize import Categorizer
from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore
from shared.schemas.messages import RecategorizeStats, ResummarizeStats

logger = get_logger("analyzer.backfill")

DEFAULT_RESUMMARIZE_LIMIT = 20
MAX_RESUMMARIZE_LIMIT = 150


class SummarizerUnavailable(RuntimeError):
    """Resummarizing needs a configured text-generation client."""


def resummarize(
    store: ArticleStore,
    summarizer: Summarizer,
    limit: int = DEFAULT_RESUMMARIZE_LIMIT,
    force: bool = False,
    delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> ResummarizeStats:
    """
    Regenerate summaries among the latest ``limit`` articles (capped at 150).
    Without ``force`` only summaries that look like the title fallback are touched.
    """
    if not summarizer.is_configured:
        raise SummarizerUnavailable("OPENAI_API_KEY not configured")

    limit = max(1, min(limit, MAX_RESUMMARIZE_LIMIT))
    started = time.monotonic()
    articles = store.latest_articles(limit)
    stats = ResummarizeStats(total=len(articles))

    targets = [a for a in articles if force or is_likely_placeholder(a.title, a.summary)]
    stats.skipped = len(articles) - len(targets)
    logger.info(f"Resummarizing {len(targets)} of {len(articles)} article(s) (force={force})")

    for index, article in enumerate(targets):
        if index and delay:
            sleep(delay)
        result = summarizer.summarize(article.title, None, article.source)
        if result.success and store.update_summary(article.id, result.summary):
            stats.updated += 1
            stats.tokens_used += result.tokens_used or 0
        else:
            stats.failed += 1
            logger.warning(f"❌ Could not resummarize {article.id}: {result.error or 'row vanished'}")

    stats.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(f"✅ Resummarize: {stats.updated} updated, {stats.failed} failed, {stats.skipped} skipped")
    return stats


def recategorize(store: ArticleStore, categorizer: Categorizer) -> RecategorizeStats:
    rows = store.all_titles()
    stats = RecategorizeStats(total=len(rows))

    for article_id, title, current in rows:
        category = categorizer.categorize(title)
        stats.category_breakdown[category] = stats.category_breakdown.get(category, 0) + 1
        if category == current:
            stats.unchanged += 1
        elif store.update_category(article_id, category):
            stats.updated += 1
        else:
            stats.failed += 1

    logger.info(f"✅ Recategorize: {stats.updated} updated, {stats.unchanged} unchanged, {stats.failed} failed")
    return stats
