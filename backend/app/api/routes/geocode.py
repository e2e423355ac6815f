"""
Geocode API routes - backs the location search box.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from app.api.errors import api_error
from app.services.geocoding import GeocodingError

router = APIRouter(prefix="/geocode", tags=["geocode"])
logger = logging.getLogger(__name__)


class GeocodeResponse(BaseModel):
    query: Optional[str] = None
    location: Optional[str] = None
    lat: float
    lng: float


@router.get("", response_model=GeocodeResponse)
async def geocode(request: Request, q: str = Query(..., min_length=1, description="Place name or address")):
    """Resolve a place name to coordinates."""
    try:
        coords = await request.app.state.geocoder.geocode(q)
    except GeocodingError as e:
        raise api_error(502, "Geocoding failed", str(e))

    if not coords:
        raise api_error(404, "Location not found", f"Could not geocode '{q}'")
    return GeocodeResponse(query=q, lat=coords[0], lng=coords[1])


@router.get("/reverse", response_model=GeocodeResponse)
async def reverse_geocode(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    """Resolve coordinates to a "City, ST" place name."""
    try:
        location = await request.app.state.geocoder.reverse(lat, lng)
    except GeocodingError as e:
        raise api_error(502, "Reverse geocoding failed", str(e))

    if not location:
        raise api_error(404, "Location not found", f"Nothing found at ({lat}, {lng})")
    return GeocodeResponse(location=location, lat=lat, lng=lng)
