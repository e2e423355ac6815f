"""
Places API routes - live nearby retail lookup.

Results are normalized and scored like ingested properties but are not
stored. Use POST /scrape with source=places to persist them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from app.api.errors import api_error
from app.api.routes.properties import PropertyListResponse, SearchLocation, property_response
from app.services.collectors import CollectionContext, CollectorError
from app.utils.geo import METERS_PER_MILE, haversine

router = APIRouter(prefix="/places", tags=["places"])
logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 50000


@router.get("", response_model=PropertyListResponse)
async def nearby_places(
    request: Request,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: int = Query(DEFAULT_RADIUS_METERS, gt=0, description="Radius in meters"),
):
    """Retail places around a point, scored but not persisted."""
    if lat is None or lng is None:
        raise api_error(400, "lat and lng required")

    orchestrator = request.app.state.orchestrator
    collector = orchestrator.collectors.get("places")
    if collector is None:
        raise api_error(500, "Places lookup not configured")

    context = CollectionContext(latitude=lat, longitude=lng, radius_miles=radius / METERS_PER_MILE)
    try:
        records = await collector.collect(context)
    except CollectorError as e:
        logger.error(f"Places lookup failed at ({lat}, {lng}): {e}")
        raise api_error(502, "Failed to fetch places", str(e))

    properties = orchestrator.prepare(records)
    results = [
        property_response(p, haversine(lat, lng, p.latitude, p.longitude) if p.has_coordinates else None)
        for p in properties
    ]
    results.sort(key=lambda r: (r.upside_score is None, -(r.upside_score or 0)))

    return PropertyListResponse(
        properties=results,
        count=len(results),
        search_location=SearchLocation(lat=lat, lng=lng),
    )
