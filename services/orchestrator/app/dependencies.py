"""Builds every pipeline component once from settings; handlers receive them via app.state."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from services.analyzer.summarize import Summarizer, create_openai_client
from services.enricher.app.enrich import ImageEnricher, ImageScraper
from services.ingestor.app.categorize import Categorizer, load_category_rules
from services.ingestor.app.dedupe import Deduplicator
from services.ingestor.app.fetch import FeedFetcher
from services.ingestor.app.normalize import Normalizer
from services.ingestor.app.pipeline import IngestionPipeline
from services.orchestrator.app.archiver import Archiver
from services.orchestrator.app.invalidate import CacheInvalidator
from services.orchestrator.app.job_runs import JobRunRecorder
from services.orchestrator.app.runner import Orchestrator
from shared.config.feeds import FeedRegistry, load_feed_registry
from shared.config.settings import Settings
from shared.database.session import create_db_engine, create_session_factory, init_db
from shared.database.store import ArticleStore
from shared.utils.health import HealthChecker, create_pipeline_health_checker


@dataclass
class Components:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    registry: FeedRegistry
    categorizer: Categorizer
    normalizer: Normalizer
    fetcher: FeedFetcher
    store: ArticleStore
    summarizer: Summarizer
    pipeline: IngestionPipeline
    scraper: ImageScraper
    enricher: ImageEnricher
    archiver: Archiver
    recorder: JobRunRecorder
    invalidator: CacheInvalidator
    orchestrator: Orchestrator
    health_checker: HealthChecker


def build_components(settings: Settings, engine: Optional[Engine] = None, summarizer: Optional[Summarizer] = None) -> Components:
    pipeline_settings = settings.pipeline

    engine = engine or create_db_engine(settings.database.database_url, echo=settings.database.echo)
    init_db(engine)
    session_factory = create_session_factory(engine)
    store = ArticleStore(session_factory)

    registry = load_feed_registry(pipeline_settings.feed_registry_path)
    categorizer = load_category_rules(pipeline_settings.category_rules_path)
    normalizer = Normalizer(categorizer)
    fetcher = FeedFetcher(timeout=pipeline_settings.feed_timeout, user_agent=pipeline_settings.feed_user_agent)

    if summarizer is None:
        summarizer = Summarizer(
            create_openai_client(settings.openai),
            model=settings.openai.model,
            max_tokens=settings.openai.max_tokens,
            temperature=settings.openai.temperature,
            content_chars=pipeline_settings.summary_content_chars,
            fallback_chars=pipeline_settings.fallback_summary_chars,
            max_retries=pipeline_settings.max_retries,
            retry_delay=pipeline_settings.retry_delay,
        )

    pipeline = IngestionPipeline(
        fetcher,
        normalizer,
        Deduplicator(store),
        summarizer,
        store,
        summary_delay=pipeline_settings.summary_delay,
    )
    scraper = ImageScraper(
        timeout=pipeline_settings.image_timeout,
        max_html_chars=pipeline_settings.image_max_html_chars,
    )
    enricher = ImageEnricher(store, scraper, delay=pipeline_settings.image_delay)
    archiver = Archiver(store)
    recorder = JobRunRecorder(session_factory)
    invalidator = CacheInvalidator(
        pipeline_settings.revalidate_url,
        pipeline_settings.revalidate_paths,
        secret=pipeline_settings.cron_secret,
    )
    orchestrator = Orchestrator(
        registry,
        pipeline,
        enricher,
        archiver,
        recorder,
        invalidator,
        job_name=pipeline_settings.job_name,
        archive_policy=pipeline_settings.archive_policy,
        enrich_limit=pipeline_settings.image_batch_limit,
        lease_seconds=pipeline_settings.run_lease_seconds,
    )
    health_checker = create_pipeline_health_checker(store, summarizer.is_configured, registry.enabled())

    return Components(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        registry=registry,
        categorizer=categorizer,
        normalizer=normalizer,
        fetcher=fetcher,
        store=store,
        summarizer=summarizer,
        pipeline=pipeline,
        scraper=scraper,
        enricher=enricher,
        archiver=archiver,
        recorder=recorder,
        invalidator=invalidator,
        orchestrator=orchestrator,
        health_checker=health_checker,
    )
