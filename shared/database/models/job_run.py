from sqlalchemy import Column, DateTime, Integer, String, Text, func

from ..base import Base


class JobRun(Base):
    """Latest-run heartbeat: one row per job name, overwritten on every run."""

    __tablename__ = "job_runs"

    job_name = Column(String, primary_key=True)
    ran_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)
    duration_ms = Column(Integer, nullable=True)
    inserted_count = Column(Integer, nullable=False, default=0)
    duplicate_count = Column(Integer, nullable=False, default=0)
    images_enriched_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    host = Column(String, nullable=True)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
