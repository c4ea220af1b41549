"""
Ingestion: fetch -> normalize/categorize -> validate -> dedupe -> summarize -> upsert.

Source failures, malformed items and summarization failures are counted and
reported in the returned stats. Anything else (store unreachable, bad
configuration) propagates to the caller.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from services.analyzer.summarize import Summarizer
from services.ingestor.app.dedupe import Deduplicator
from services.ingestor.app.fetch import FeedFetcher
from services.ingestor.app.normalize import Normalizer
from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore
from shared.schemas.messages import (
    ArticleRecord,
    FeedDescriptor,
    IngestionStats,
    NormalizedItem,
    SourceIngestResult,
)
from shared.utils.deadline import Deadline
from shared.utils.metrics import (
    ARTICLE_WRITE_FAILURES,
    ARTICLES_DUPLICATE,
    ARTICLES_INSERTED,
    SUMMARIES,
)

logger = get_logger("ingestor.pipeline")

REQUIRED_FIELDS = ("id", "title", "link", "published_at", "source", "category")


def validation_reason(item: NormalizedItem) -> Optional[str]:
    for name in REQUIRED_FIELDS:
        value = getattr(item, name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            return f"Missing {name}"
    return None


class IngestionPipeline:
    def __init__(
        self,
        fetcher: FeedFetcher,
        normalizer: Normalizer,
        deduplicator: Deduplicator,
        summarizer: Summarizer,
        store: ArticleStore,
        summary_delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.deduplicator = deduplicator
        self.summarizer = summarizer
        self.store = store
        self.summary_delay = summary_delay
        self._sleep = sleep

    def run(self, feeds: Sequence[FeedDescriptor], deadline: Optional[Deadline] = None) -> IngestionStats:
        deadline = deadline or Deadline.unbounded()
        stats = IngestionStats(total_sources=len(feeds))
        stats.summarization.enabled = self.summarizer.is_configured
        logger.info(f"Starting ingestion of {len(feeds)} feeds")

        per_source: Dict[str, SourceIngestResult] = {}
        considered = self._collect(feeds, stats, per_source)
        stats.total_items_considered = len(considered)

        dedup = self.deduplicator.dedupe(considered)
        survivors = dedup.survivors
        stats.total_items_attempted = len(survivors)

        records = self._summarize(survivors, stats, deadline)
        if records:
            upsert = self.store.upsert_ignoring_duplicates(records)
        else:
            upsert = None

        inserted = upsert.inserted_count if upsert else 0
        failed = upsert.failed_count if upsert else 0
        stats.total_items_inserted = inserted
        stats.total_db_errors = failed
        stats.total_items_duplicates = len(considered) - inserted - failed
        if upsert:
            stats.errors.extend(upsert.errors)
            source_of = {record.id: record.source for record in records}
            for article_id in upsert.inserted_ids:
                per_source[source_of[article_id]].items_inserted += 1

        ARTICLES_INSERTED.inc(inserted)
        ARTICLES_DUPLICATE.inc(stats.total_items_duplicates)
        ARTICLE_WRITE_FAILURES.inc(failed)

        stats.per_source = list(per_source.values())
        stats.completed_at = datetime.now(timezone.utc)
        stats.duration_ms = int((stats.completed_at - stats.started_at).total_seconds() * 1000)
        log_ingestion_summary(stats)
        return stats

    def _collect(
        self,
        feeds: Sequence[FeedDescriptor],
        stats: IngestionStats,
        per_source: Dict[str, SourceIngestResult],
    ) -> List[NormalizedItem]:
        considered: List[NormalizedItem] = []
        for result in self.fetcher.fetch_all(feeds):
            source = SourceIngestResult(
                source=result.source,
                fetch_status="success" if result.ok else "error",
                fetch_error=result.error,
                items_fetched=len(result.items),
                diagnostics=result.diagnostics,
            )
            per_source[result.source] = source
            stats.total_items_fetched += len(result.items)

            if not result.ok:
                stats.failed_sources += 1
                stats.errors.append(f"{result.source}: {result.error}")
                continue
            stats.successful_sources += 1

            normalized = self.normalizer.normalize_many(result.items, result.source, result.content_type)
            source.items_normalized = len(normalized)
            stats.total_items_normalized += len(normalized)

            discarded = len(result.items) - len(normalized)
            if discarded:
                source.items_skipped += discarded
                source.skip_reasons.append(f"{discarded} item(s) without title or link")

            for item in normalized:
                reason = validation_reason(item)
                if reason:
                    source.items_skipped += 1
                    source.skip_reasons.append(f"{item.title[:50] or item.link}: {reason}")
                    continue
                considered.append(item)

            stats.total_items_skipped += source.items_skipped
        return considered

    def _summarize(
        self,
        items: Sequence[NormalizedItem],
        stats: IngestionStats,
        deadline: Deadline,
    ) -> List[ArticleRecord]:
        summary_stats = stats.summarization
        records = []
        for index, item in enumerate(items):
            summary = None
            if self.summarizer.is_configured and not deadline.expired():
                if summary_stats.attempted and self.summary_delay:
                    self._sleep(self.summary_delay)
                summary_stats.attempted += 1
                result = self.summarizer.summarize(item.title, item.excerpt, item.source)
                if result.success:
                    summary_stats.successful += 1
                    summary_stats.tokens_used += result.tokens_used or 0
                    summary = result.summary
                else:
                    summary_stats.failed += 1
            elif self.summarizer.is_configured and not stats.deadline_reached:
                stats.deadline_reached = True
                logger.warning(
                    f"Time budget reached after {index} summaries; "
                    f"{len(items) - index} item(s) get the title fallback"
                )

            if summary is None:
                summary = self.summarizer.fallback(item.title)
                summary_stats.fallback += 1
                SUMMARIES.labels(kind="fallback").inc()
            else:
                SUMMARIES.labels(kind="ai").inc()

            records.append(ArticleRecord(**item.model_dump(), summary=summary))
        return records


def log_ingestion_summary(stats: IngestionStats) -> None:
    s = stats.summarization
    logger.info(
        f"Ingestion complete in {stats.duration_ms}ms: "
        f"sources {stats.successful_sources}/{stats.total_sources} ok, "
        f"fetched {stats.total_items_fetched}, considered {stats.total_items_considered}, "
        f"inserted {stats.total_items_inserted}, duplicates {stats.total_items_duplicates}, "
        f"skipped {stats.total_items_skipped}, db errors {stats.total_db_errors}"
    )
    if s.enabled:
        logger.info(
            f"Summaries: {s.successful}/{s.attempted} ok, {s.failed} failed, "
            f"{s.fallback} fallback, {s.tokens_used} tokens"
        )
    for source in stats.per_source:
        icon = "✅" if source.fetch_status == "success" else "❌"
        detail = source.fetch_error or (
            f"{source.items_fetched} fetched, {source.items_inserted} new, {source.items_skipped} skipped"
        )
        logger.info(f"  {icon} {source.source}: {detail}")
