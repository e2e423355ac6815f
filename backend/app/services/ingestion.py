"""
Ingestion orchestration.

A job moves pending -> running -> completed | failed. The running state is
committed before any collector starts and the terminal state is written
only after every collector and every upsert for the job has finished, so
a poller never sees `completed` ahead of the data.

Collectors are isolated from each other: each runs under its own timeout
and a failure only costs that collector's records. The job fails when
every collector that ran raised, or when storage itself is unavailable.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import DataError, IntegrityError

from app.core.database import Database
from app.models.scraper_job import JobStatus, ScraperJob, ScraperRun
from app.services.collectors import Collector, CollectionContext, CollectorTimeout
from app.services.geocoding import GeocodingError, GeocodingService
from app.services.normalizer import CanonicalProperty, RecordNormalizer, ScrapedListingRecord, SourceRecord
from app.services.property_store import upsert_property
from app.services.scoring import DEFAULT_MARKET_VACANCY_RATE, score_property

logger = logging.getLogger(__name__)

SOURCE_ALL = "all"
SOURCES = (SOURCE_ALL, "loopnet", "crexi", "places")
DEFAULT_RADIUS_MILES = 25.0
INTERRUPTED_MESSAGE = "interrupted: process stopped while the job was running"


class UnknownSourceError(ValueError):
    pass


class JobNotFoundError(LookupError):
    pass


def new_job_id() -> str:
    return f"scrape-{uuid.uuid4().hex[:12]}"


@dataclass
class CollectorOutcome:
    name: str
    records: list[SourceRecord] = field(default_factory=list)
    error: Optional[str] = None
    run_id: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class IngestionOrchestrator:
    """
    Runs ingestion jobs against a set of named collectors.

    Usage:
        orchestrator = IngestionOrchestrator(database, collectors, normalizer, geocoder)
        job = orchestrator.create_job("all", location="Denver, CO")
        job = await orchestrator.run_job(job.job_id)
    """

    def __init__(
        self,
        database: Database,
        collectors: list[Collector],
        normalizer: RecordNormalizer,
        geocoder: Optional[GeocodingService] = None,
        market_vacancy_rate: float = DEFAULT_MARKET_VACANCY_RATE,
        collector_timeout: float = 120.0,
        default_radius_miles: float = DEFAULT_RADIUS_MILES,
    ):
        self.database = database
        self.collectors = {c.name: c for c in collectors}
        self.normalizer = normalizer
        self.geocoder = geocoder
        self.market_vacancy_rate = market_vacancy_rate
        self.collector_timeout = collector_timeout
        self.default_radius_miles = default_radius_miles

    # -------------------------------------------------------------------------
    # Job ledger
    # -------------------------------------------------------------------------

    def collectors_for(self, source: str) -> list[Collector]:
        source = (source or "").strip().lower()
        if source not in SOURCES:
            raise UnknownSourceError(f"Unknown source '{source}'. Expected one of: {', '.join(SOURCES)}")
        if source == SOURCE_ALL:
            return list(self.collectors.values())
        collector = self.collectors.get(source)
        return [collector] if collector else []

    def create_job(
        self,
        source: str,
        location: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_miles: Optional[float] = None,
    ) -> ScraperJob:
        """Record a pending job. Raises UnknownSourceError for a bad source."""
        self.collectors_for(source)

        with self.database.session() as db:
            job = ScraperJob(
                job_id=new_job_id(),
                source=source.strip().lower(),
                location=location.strip() if location else None,
                latitude=latitude,
                longitude=longitude,
                radius_miles=radius_miles or self.default_radius_miles,
                status=JobStatus.PENDING.value,
                properties_found=0,
                properties_added=0,
            )
            db.add(job)
            db.commit()
            db.refresh(job)

        logger.info(f"Created ingestion job {job.job_id}: source={job.source} location={job.location}")
        return job

    def get_job(self, job_id: str) -> Optional[ScraperJob]:
        with self.database.session() as db:
            return db.execute(select(ScraperJob).where(ScraperJob.job_id == job_id)).scalar_one_or_none()

    def recent_runs(self, limit: int = 10) -> list[ScraperRun]:
        with self.database.session() as db:
            stmt = select(ScraperRun).order_by(ScraperRun.started_at.desc(), ScraperRun.id.desc()).limit(limit)
            return list(db.scalars(stmt))

    def fail_stale_jobs(self) -> int:
        """Mark jobs and runs left running by a previous process as failed."""
        now = datetime.now(timezone.utc)
        with self.database.session() as db:
            jobs = list(db.scalars(select(ScraperJob).where(ScraperJob.status == JobStatus.RUNNING.value)))
            for job in jobs:
                job.status = JobStatus.FAILED.value
                job.error_message = INTERRUPTED_MESSAGE
                job.completed_at = now
            for run in db.scalars(select(ScraperRun).where(ScraperRun.status == JobStatus.RUNNING.value)):
                run.status = JobStatus.FAILED.value
                run.error_message = INTERRUPTED_MESSAGE
                run.completed_at = now
            db.commit()

        if jobs:
            logger.warning(f"Marked {len(jobs)} interrupted ingestion job(s) as failed")
        return len(jobs)

    # -------------------------------------------------------------------------
    # Running a job
    # -------------------------------------------------------------------------

    async def ingest(self, source: str, **kwargs) -> ScraperJob:
        """Create a job and run it to a terminal state."""
        job = self.create_job(source, **kwargs)
        return await self.run_job(job.job_id)

    async def run_job(self, job_id: str) -> ScraperJob:
        """
        Drive one pending job to completed or failed and return it.

        Anything raised after the job is marked running (storage outages
        included) ends the job as failed rather than leaving it running.
        """
        job = self._start(job_id)
        if job.status != JobStatus.RUNNING.value:
            return job

        try:
            await self._execute(job)
        except Exception as e:
            logger.error(f"Ingestion job {job_id} failed: {e}", exc_info=True)
            self._finish(job, JobStatus.FAILED, error_message=f"{type(e).__name__}: {e}")

        return self.get_job(job_id)

    def _start(self, job_id: str) -> ScraperJob:
        with self.database.session() as db:
            job = db.execute(select(ScraperJob).where(ScraperJob.job_id == job_id)).scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status != JobStatus.PENDING.value:
                logger.warning(f"Job {job_id} is already {job.status}, not running it again")
                return job
            job.status = JobStatus.RUNNING.value
            job.started_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(job)
        logger.info(f"Job {job_id} running")
        return job

    async def _execute(self, job: ScraperJob):
        context = await self._resolve_context(job)

        runnable = []
        skipped = {}
        for collector in self.collectors_for(job.source):
            if collector.can_run(context):
                runnable.append(collector)
            else:
                reason = "no coordinates" if collector.requires_coordinates else "no location"
                skipped[collector.name] = reason
                logger.warning(f"Job {job.job_id}: skipping {collector.name} collector ({reason})")

        outcomes = await asyncio.gather(*(self._run_collector(job.job_id, c, context) for c in runnable))

        found = sum(len(o.records) for o in outcomes)
        added_by_collector: dict[str, int] = {}
        try:
            prepared = []
            for outcome in outcomes:
                if outcome.records:
                    await self._backfill_coordinates(outcome.records)
                for prop in self.prepare(outcome.records):
                    prepared.append((outcome.name, prop))
            added_by_collector = self._store(job.job_id, prepared)
        finally:
            self._close_runs(outcomes, added_by_collector)
        added = sum(added_by_collector.values())

        results = {
            "collectors": {
                o.name: {
                    "found": len(o.records),
                    "added": added_by_collector.get(o.name, 0),
                    "error": o.error,
                }
                for o in outcomes
            },
            "skipped": skipped,
        }

        failures = [o for o in outcomes if o.failed]
        if outcomes and len(failures) == len(outcomes):
            message = "; ".join(f"{o.name}: {o.error}" for o in failures)
            self._finish(job, JobStatus.FAILED, found, added, results, context, error_message=message)
        else:
            self._finish(job, JobStatus.COMPLETED, found, added, results, context)

    async def _resolve_context(self, job: ScraperJob) -> CollectionContext:
        """Fill in whichever of place name and coordinates the job lacks."""
        context = CollectionContext(
            location=job.location,
            latitude=job.latitude,
            longitude=job.longitude,
            radius_miles=job.radius_miles or self.default_radius_miles,
        )
        if self.geocoder is None:
            return context

        if context.location and not context.has_coordinates:
            try:
                coords = await self.geocoder.geocode(context.location)
            except (GeocodingError, asyncio.TimeoutError) as e:
                logger.warning(f"Job {job.job_id}: geocoding '{context.location}' failed: {e}")
                coords = None
            if coords:
                context.latitude, context.longitude = coords
        elif context.has_coordinates and not context.location:
            try:
                context.location = await self.geocoder.reverse(context.latitude, context.longitude)
            except (GeocodingError, asyncio.TimeoutError) as e:
                logger.warning(f"Job {job.job_id}: reverse geocoding failed: {e}")

        return context

    async def _run_collector(self, job_id: str, collector: Collector, context: CollectionContext) -> CollectorOutcome:
        outcome = CollectorOutcome(name=collector.name)

        with self.database.session() as db:
            run = ScraperRun(
                job_id=job_id,
                source=collector.name,
                status=JobStatus.RUNNING.value,
                started_at=datetime.now(timezone.utc),
            )
            db.add(run)
            db.commit()
            outcome.run_id = run.id

        try:
            records = await asyncio.wait_for(collector.collect(context), timeout=self.collector_timeout)
            outcome.records = list(records or [])
            logger.info(f"Job {job_id}: {collector.name} returned {len(outcome.records)} records")
        except asyncio.TimeoutError:
            error = CollectorTimeout(f"timed out after {self.collector_timeout:g}s")
            outcome.error = str(error)
            logger.error(f"Job {job_id}: {collector.name} collector {error}")
        except Exception as e:
            outcome.error = f"{type(e).__name__}: {e}"
            logger.error(f"Job {job_id}: {collector.name} collector failed: {e}", exc_info=True)

        return outcome

    async def _backfill_coordinates(self, records: list[SourceRecord]):
        """Geocode scraped listings that came back without coordinates."""
        if self.geocoder is None:
            return

        for record in records:
            if not isinstance(record, ScrapedListingRecord) or record.latitude is not None or not record.address:
                continue
            query = record.address
            if "," not in query and record.search_location:
                query = f"{query}, {record.search_location}"
            try:
                coords = await self.geocoder.geocode(query)
            except (GeocodingError, asyncio.TimeoutError) as e:
                logger.warning(f"Could not geocode listing address '{query}': {e}")
                continue
            if coords:
                record.latitude, record.longitude = coords

    def prepare(self, records: list[SourceRecord]) -> list[CanonicalProperty]:
        """Normalize and score records, dropping the unusable ones."""
        prepared = []
        for record in records:
            prop = self.normalizer.normalize(record)
            if prop is None:
                continue
            score_property(prop, self.market_vacancy_rate)
            prepared.append(prop)
        return prepared

    def _store(self, job_id: str, prepared: list[tuple[str, CanonicalProperty]]) -> dict[str, int]:
        """
        Upsert prepared properties, one commit per record.

        Duplicate external ids within the batch collapse to the last one.
        A record the database rejects is logged and skipped; connection
        errors propagate and fail the job.
        """
        batch: dict = {}
        for name, prop in prepared:
            key = prop.external_id or id(prop)
            batch.pop(key, None)
            batch[key] = (name, prop)

        added: dict[str, int] = {}
        now = datetime.now(timezone.utc)
        with self.database.session() as db:
            for name, prop in batch.values():
                try:
                    upsert_property(db, prop, now=now)
                    db.commit()
                except (IntegrityError, DataError) as e:
                    db.rollback()
                    logger.warning(f"Job {job_id}: skipping property '{prop.name}' ({prop.external_id}): {e}")
                    continue
                added[name] = added.get(name, 0) + 1

        logger.info(f"Job {job_id}: stored {sum(added.values())} of {len(batch)} properties")
        return added

    def _close_runs(self, outcomes: list[CollectorOutcome], added: dict[str, int]):
        now = datetime.now(timezone.utc)
        with self.database.session() as db:
            for outcome in outcomes:
                run = db.get(ScraperRun, outcome.run_id)
                if run is None:
                    continue
                run.status = JobStatus.FAILED.value if outcome.failed else JobStatus.COMPLETED.value
                run.properties_found = len(outcome.records)
                run.properties_added = added.get(outcome.name, 0)
                run.error_message = outcome.error
                run.completed_at = now
            db.commit()

    def _finish(
        self,
        job: ScraperJob,
        status: JobStatus,
        found: int = 0,
        added: int = 0,
        results: Optional[dict] = None,
        context: Optional[CollectionContext] = None,
        error_message: Optional[str] = None,
    ):
        with self.database.session() as db:
            db_job = db.execute(select(ScraperJob).where(ScraperJob.job_id == job.job_id)).scalar_one()
            db_job.status = status.value
            db_job.properties_found = found
            db_job.properties_added = added
            db_job.results = results
            db_job.error_message = error_message
            db_job.completed_at = datetime.now(timezone.utc)
            if context is not None:
                db_job.location = db_job.location or context.location
                if db_job.latitude is None and context.has_coordinates:
                    db_job.latitude, db_job.longitude = context.latitude, context.longitude
            db.commit()

        logger.info(f"Job {job.job_id} {status.value}: found={found} added={added}")
