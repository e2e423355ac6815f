"""
Ingestion API routes.

POST /scrape runs collectors for a place and stores what they find.
With async=true the job id comes back immediately and the job runs as a
background task; poll GET /scrape/jobs/{job_id} for its outcome.
"""

import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from app.api.errors import api_error
from app.services.ingestion import UnknownSourceError

router = APIRouter(prefix="/scrape", tags=["scrape"])
logger = logging.getLogger(__name__)


class ScrapeRequest(BaseModel):
    """Request to ingest properties around a location."""
    source: str = Field("all", description="all, loopnet, crexi or places")
    location: Optional[str] = Field(None, description='Place name, e.g. "Denver, CO"')
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    radius: Optional[float] = Field(None, gt=0, description="Search radius in miles")
    run_async: bool = Field(False, alias="async")

    class Config:
        populate_by_name = True


class ScrapeResponse(BaseModel):
    job_id: str
    status: str
    source: str
    location: Optional[str] = None
    found: Optional[int] = None
    added: Optional[int] = None
    error: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class JobResponse(BaseModel):
    job_id: str
    source: str
    location: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    radius_miles: Optional[float]
    status: str
    properties_found: Optional[int]
    properties_added: Optional[int]
    error_message: Optional[str]
    results: Optional[dict]
    created_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class RunResponse(BaseModel):
    id: int
    job_id: Optional[str]
    source: Optional[str]
    status: Optional[str]
    properties_found: Optional[int]
    properties_added: Optional[int]
    error_message: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class RunListResponse(BaseModel):
    runs: List[RunResponse]


@router.post("", response_model=ScrapeResponse)
async def trigger_scrape(
    request: Request,
    scrape_request: ScrapeRequest,
    background_tasks: BackgroundTasks,
):
    """
    Trigger an ingestion job.

    Needs a location or a lat/lng pair. Synchronous calls return the
    finished job's counts (a failed job still returns its id and status).
    """
    if (scrape_request.lat is None) != (scrape_request.lng is None):
        raise api_error(400, "Invalid search origin", "lat and lng must be given together")
    if not scrape_request.location and scrape_request.lat is None:
        raise api_error(400, "Missing location", "Provide a location or lat and lng")

    orchestrator = request.app.state.orchestrator
    try:
        job = orchestrator.create_job(
            scrape_request.source,
            location=scrape_request.location,
            latitude=scrape_request.lat,
            longitude=scrape_request.lng,
            radius_miles=scrape_request.radius,
        )
    except UnknownSourceError as e:
        raise api_error(400, "Unknown source", str(e))

    if scrape_request.run_async:
        background_tasks.add_task(orchestrator.run_job, job.job_id)
        return ScrapeResponse(
            job_id=job.job_id,
            status=job.status,
            source=job.source,
            location=job.location,
        )

    job = await orchestrator.run_job(job.job_id)
    return ScrapeResponse(
        job_id=job.job_id,
        status=job.status,
        source=job.source,
        location=job.location,
        found=job.properties_found,
        added=job.properties_added,
        error=job.error_message,
    )


@router.get("", response_model=RunListResponse)
def list_recent_runs(request: Request):
    """Ten most recent collector runs, newest first."""
    runs = request.app.state.orchestrator.recent_runs(limit=10)
    return RunListResponse(runs=[RunResponse.model_validate(r) for r in runs])


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job_status(request: Request, job_id: str):
    """Get the status of an ingestion job."""
    job = request.app.state.orchestrator.get_job(job_id)
    if not job:
        raise api_error(404, "Job not found", f"No ingestion job with id {job_id}")
    return job
