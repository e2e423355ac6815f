"""
Ingestion job ledger.

ScraperJob tracks one ingestion request through
pending -> running -> completed | failed. ScraperRun is the append-only
audit trail: one row per collector invocation.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Float, JSON
from sqlalchemy.sql import func
from enum import Enum

from app.core.database import Base


class JobStatus(str, Enum):
    """Ingestion job status values."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ScraperJob(Base):
    __tablename__ = "scraper_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(255), unique=True, nullable=False, index=True)  # Format: "scrape-{uuid}"

    # Request details
    source = Column(String(50), nullable=False)  # all, loopnet, crexi, places
    location = Column(String(255))
    latitude = Column(Float)
    longitude = Column(Float)
    radius_miles = Column(Float)

    # Status tracking
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)
    properties_found = Column(Integer, default=0)
    properties_added = Column(Integer, default=0)
    error_message = Column(Text)
    results = Column(JSON)  # Per-collector counts and skipped collectors

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<ScraperJob(job_id='{self.job_id}', source='{self.source}', status='{self.status}')>"


class ScraperRun(Base):
    __tablename__ = "scraper_runs"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(255), index=True)
    source = Column(String(50))
    status = Column(String(20))
    properties_found = Column(Integer, default=0)
    properties_added = Column(Integer, default=0)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return f"<ScraperRun {self.id}: {self.source} {self.status}>"
