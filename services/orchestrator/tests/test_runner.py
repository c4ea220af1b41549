import pytest

from services.orchestrator.app.archiver import Archiver
from services.orchestrator.app.invalidate import CacheInvalidator
from services.orchestrator.app.job_runs import JobRunRecorder
from services.orchestrator.app.runner import Orchestrator, RunLeaseHeld, RunState
from shared.config.feeds import FeedRegistry
from shared.schemas.messages import EnrichmentStats, FeedDescriptor, IngestionStats
from shared.utils.deadline import Deadline

REGISTRY = FeedRegistry([
    FeedDescriptor(name="On", address="https://on.example/rss"),
    FeedDescriptor(name="Off", address="https://off.example/rss", enabled=False),
])


class DummyPipeline:
    def __init__(self, error=None):
        self.error = error
        self.feeds = None

    def run(self, feeds, deadline=None):
        self.feeds = [f.name for f in feeds]
        if self.error:
            raise self.error
        return IngestionStats(total_items_inserted=3, total_items_duplicates=4)


class DummyEnricher:
    def __init__(self, error=None):
        self.error = error
        self.limits = []

    def enrich_missing(self, limit, deadline=None):
        self.limits.append(limit)
        if self.error:
            raise self.error
        return EnrichmentStats(checked=2, updated=2)


class ExplodingArchiver:
    def run(self, policy):
        raise RuntimeError("archive table locked")


class DummyInvalidator:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def invalidate(self):
        self.calls += 1
        if self.error:
            raise self.error
        return True


@pytest.fixture
def recorder(session_factory):
    return JobRunRecorder(session_factory)


def orchestrator(store, recorder, pipeline=None, enricher=None, archiver=None, invalidator=None, **kw):
    return Orchestrator(
        REGISTRY,
        pipeline or DummyPipeline(),
        enricher or DummyEnricher(),
        archiver or Archiver(store),
        recorder,
        invalidator or CacheInvalidator(None, []),
        archive_policy={"finance": 6},
        **kw,
    )


def test_start_writes_started_heartbeat(store, recorder):
    handle = orchestrator(store, recorder).start(host="test-host")
    run = recorder.latest("orchestrator")
    assert run.status == RunState.STARTED.value
    assert run.host == "test-host"
    assert handle.run_id


def test_successful_run_records_metrics(store, recorder):
    pipeline, invalidator = DummyPipeline(), DummyInvalidator()
    orch = orchestrator(store, recorder, pipeline=pipeline, invalidator=invalidator)
    report = orch.run()

    assert report.status == "success"
    assert pipeline.feeds == ["On"]
    assert report.metrics.inserted_count == 3
    assert report.metrics.duplicate_count == 4
    assert report.metrics.images_enriched_count == 2
    assert report.archived == {"finance": 0}
    assert report.invalidated is True
    assert invalidator.calls == 1

    run = recorder.latest("orchestrator")
    assert run.status == "success"
    assert run.inserted_count == 3
    assert run.images_enriched_count == 2
    assert run.error_message is None
    assert run.duration_ms is not None


def test_fatal_ingestion_error_is_recorded(store, recorder):
    orch = orchestrator(store, recorder, pipeline=DummyPipeline(error=ConnectionError("db unreachable")))
    report = orch.run()

    assert report.status == "error"
    assert "db unreachable" in report.error
    run = recorder.latest("orchestrator")
    assert run.status == "error"
    assert "db unreachable" in run.error_message


def test_error_after_ingestion_keeps_partial_metrics(store, recorder):
    orch = orchestrator(store, recorder, enricher=DummyEnricher(error=RuntimeError("scraper crashed")))
    orch.run()

    run = recorder.latest("orchestrator")
    assert run.status == "error"
    assert run.inserted_count == 3
    assert run.duplicate_count == 4
    assert run.images_enriched_count == 0


def test_archive_and_invalidation_failures_do_not_fail_the_run(store, recorder):
    orch = orchestrator(
        store,
        recorder,
        archiver=ExplodingArchiver(),
        invalidator=DummyInvalidator(error=RuntimeError("revalidate 500")),
    )
    report = orch.run()

    assert report.status == "success"
    assert len(report.warnings) == 2
    assert recorder.latest("orchestrator").status == "success"


def test_spent_budget_skips_lower_priority_stages(store, recorder):
    enricher = DummyEnricher()
    orch = orchestrator(store, recorder, enricher=enricher)
    report = orch.execute(orch.start(), deadline=Deadline(0))

    assert report.status == "success"
    assert report.skipped_stages == ["enrich", "archive"]
    assert enricher.limits == []


def test_enrich_limit_override(store, recorder):
    enricher = DummyEnricher()
    orch = orchestrator(store, recorder, enricher=enricher, enrich_limit=15)
    orch.run(enrich_limit=4)
    orch.run()
    assert enricher.limits == [4, 15]


def test_lease_refuses_overlapping_runs(store, recorder):
    orch = orchestrator(store, recorder, lease_seconds=600)
    handle = orch.start()
    with pytest.raises(RunLeaseHeld):
        orch.start()

    orch.execute(handle)
    assert orch.start().run_id != handle.run_id


def test_without_lease_overlapping_starts_are_allowed(store, recorder):
    orch = orchestrator(store, recorder)
    orch.start()
    orch.start()
