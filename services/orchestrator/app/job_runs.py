from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker

from shared.app_logging.logger import get_logger
from shared.database.models import JobRun
from shared.schemas.messages import JobRunMetrics, JobRunOut

logger = get_logger("orchestrator.job_runs")

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def time_since(then: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    seconds = max(0, int((now - _aware(then)).total_seconds()))
    days, hours, minutes = seconds // 86400, seconds // 3600, seconds // 60
    if days:
        return f"{days} day{'s' if days != 1 else ''} ago"
    if hours:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if minutes:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    return "Just now"


class JobRunRecorder:
    """Upserts the single latest-run heartbeat row for a job name."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(
        self,
        job_name: str,
        status: str,
        ran_at: datetime,
        metrics: Optional[JobRunMetrics] = None,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        host: Optional[str] = None,
    ) -> None:
        metrics = metrics or JobRunMetrics()
        values = {
            "job_name": job_name,
            "ran_at": ran_at,
            "status": status,
            "duration_ms": duration_ms,
            "inserted_count": metrics.inserted_count,
            "duplicate_count": metrics.duplicate_count,
            "images_enriched_count": metrics.images_enriched_count,
            "error_message": error_message,
            "host": host,
            "updated_at": datetime.now(timezone.utc),
        }
        with self.session_factory() as session:
            insert = _DIALECT_INSERTS[session.get_bind().dialect.name]
            stmt = insert(JobRun).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[JobRun.job_name],
                set_={key: stmt.excluded[key] for key in values if key != "job_name"},
            )
            session.execute(stmt)
            session.commit()
        logger.info(f"Job run '{job_name}' recorded as {status}")

    def latest(self, job_name: str) -> Optional[JobRunOut]:
        with self.session_factory() as session:
            row = session.scalar(select(JobRun).where(JobRun.job_name == job_name))
            return JobRunOut.model_validate(row) if row else None

    def holds_lease(self, job_name: str, lease_seconds: int, now: Optional[datetime] = None) -> bool:
        """True while a run is marked started and younger than the lease."""
        if lease_seconds <= 0:
            return False
        run = self.latest(job_name)
        if run is None or run.status != "started":
            return False
        now = now or datetime.now(timezone.utc)
        return (now - _aware(run.ran_at)).total_seconds() < lease_seconds
