"""
Orchestrator: one pipeline run from trigger to terminal heartbeat.

    start()   -> writes the ``started`` JobRun row (and honours the run lease)
    execute() -> ingest -> enrich -> archive -> invalidate, then exactly one
                 terminal ``success`` / ``error`` write

``execute`` never raises; whatever escapes a stage ends up in the JobRun row
and the returned report. Archive and invalidation failures are logged as
warnings and do not fail the run.
"""

import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from services.enricher.app.enrich import ImageEnricher
from services.ingestor.app.pipeline import IngestionPipeline
from services.orchestrator.app.archiver import Archiver
from services.orchestrator.app.invalidate import CacheInvalidator
from services.orchestrator.app.job_runs import JobRunRecorder
from shared.app_logging.logger import CorrelationContext, get_logger, log_error_with_context
from shared.config.feeds import FeedRegistry
from shared.schemas.messages import RunReport
from shared.utils.deadline import Deadline
from shared.utils.metrics import PIPELINE_RUNS

logger = get_logger("orchestrator.runner")


class RunState(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"


class RunLeaseHeld(Exception):
    """Another run is still marked as started and its lease has not expired."""


@dataclass
class RunHandle:
    run_id: str
    started_at: datetime
    host: Optional[str] = None


class Orchestrator:
    def __init__(
        self,
        registry: FeedRegistry,
        pipeline: IngestionPipeline,
        enricher: ImageEnricher,
        archiver: Archiver,
        recorder: JobRunRecorder,
        invalidator: CacheInvalidator,
        job_name: str = "orchestrator",
        archive_policy: Optional[Dict[str, int]] = None,
        enrich_limit: int = 15,
        lease_seconds: int = 0,
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.enricher = enricher
        self.archiver = archiver
        self.recorder = recorder
        self.invalidator = invalidator
        self.job_name = job_name
        self.archive_policy = dict(archive_policy or {})
        self.enrich_limit = enrich_limit
        self.lease_seconds = lease_seconds

    def start(self, host: Optional[str] = None) -> RunHandle:
        if self.recorder.holds_lease(self.job_name, self.lease_seconds):
            raise RunLeaseHeld(f"Job '{self.job_name}' is already running")

        handle = RunHandle(
            run_id=uuid.uuid4().hex[:12],
            started_at=datetime.now(timezone.utc),
            host=host or socket.gethostname(),
        )
        self.recorder.record(self.job_name, RunState.STARTED.value, handle.started_at, host=handle.host)
        logger.info(f"▶︎ Run {handle.run_id} started on {handle.host}")
        return handle

    def execute(
        self,
        handle: RunHandle,
        enrich_limit: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> RunReport:
        deadline = deadline or Deadline.unbounded()
        limit = self.enrich_limit if enrich_limit is None else enrich_limit
        report = RunReport(run_id=handle.run_id, status=RunState.SUCCESS.value, started_at=handle.started_at)

        with CorrelationContext(handle.run_id):
            try:
                self._run_stages(report, limit, deadline)
            except Exception as e:
                report.status = RunState.ERROR.value
                report.error = f"{type(e).__name__}: {e}"
                log_error_with_context(logger, e, {"run_id": handle.run_id, "job_name": self.job_name})

            report.duration_ms = deadline.elapsed_ms()
            self._finish(handle, report)
        return report

    def _run_stages(self, report: RunReport, limit: int, deadline: Deadline) -> None:
        ingestion = self.pipeline.run(self.registry.enabled(), deadline)
        report.ingestion = ingestion
        report.metrics.inserted_count = ingestion.total_items_inserted
        report.metrics.duplicate_count = ingestion.total_items_duplicates

        if deadline.expired():
            report.skipped_stages.append("enrich")
            logger.warning("Time budget spent during ingestion; skipping image enrichment")
        else:
            enrichment = self.enricher.enrich_missing(limit, deadline)
            report.enrichment = enrichment
            report.metrics.images_enriched_count = enrichment.updated

        if deadline.expired():
            report.skipped_stages.append("archive")
            logger.warning("Time budget spent; skipping archive")
        else:
            try:
                report.archived = self.archiver.run(self.archive_policy)
            except Exception as e:
                report.warnings.append(f"archive: {e}")
                logger.warning(f"❌ Archive failed, continuing: {e}")

        try:
            report.invalidated = self.invalidator.invalidate()
        except Exception as e:
            report.warnings.append(f"invalidate: {e}")
            logger.warning(f"❌ Cache invalidation failed, continuing: {e}")

    def _finish(self, handle: RunHandle, report: RunReport) -> None:
        try:
            self.recorder.record(
                self.job_name,
                report.status,
                handle.started_at,
                metrics=report.metrics,
                duration_ms=report.duration_ms,
                error_message=report.error,
                host=handle.host,
            )
        except Exception as e:
            # Nothing else can carry the outcome once the heartbeat write fails
            log_error_with_context(logger, e, {"run_id": handle.run_id, "stage": "record"})

        PIPELINE_RUNS.labels(status=report.status).inc()
        icon = "✅" if report.status == RunState.SUCCESS.value else "❌"
        logger.info(
            f"{icon} Run {handle.run_id} finished {report.status} in {report.duration_ms}ms: "
            f"{report.metrics.inserted_count} inserted, {report.metrics.duplicate_count} duplicates, "
            f"{report.metrics.images_enriched_count} images"
        )

    def run(self, budget: Optional[float] = None, enrich_limit: Optional[int] = None, host: Optional[str] = None) -> RunReport:
        """Start and execute in the calling thread under a time budget."""
        handle = self.start(host)
        return self.execute(handle, enrich_limit=enrich_limit, deadline=Deadline(budget))
