"""
Properties API routes.

Search stored properties (attribute filters, viewport bounds, radius
around a point or a place name) and submit properties directly.
"""

import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.errors import api_error
from app.core.database import get_db
from app.services.geocoding import GeocodingError
from app.services.normalizer import ManualRecord
from app.services.property_query import PropertyQuery, parse_sort_key, search_properties
from app.services.property_store import get_property, upsert_property
from app.services.scoring import score_property

router = APIRouter(prefix="/properties", tags=["properties"])
logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class PropertyResponse(BaseModel):
    """A property as returned to clients (camelCase keys)."""
    id: Optional[int] = None
    external_id: Optional[str] = None
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price: Optional[float] = None
    sqft: Optional[int] = None
    price_per_sqft: float = 0.0
    vacancy_rate: Optional[float] = None
    cap_rate: Optional[float] = None
    upside_score: Optional[int] = None
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    tenant_count: Optional[int] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    source: Optional[str] = None
    listing_url: Optional[str] = None
    google_place_id: Optional[str] = None
    google_rating: Optional[float] = None
    scraped_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    distance: Optional[float] = None  # Miles from the search origin

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class SearchLocation(BaseModel):
    lat: float
    lng: float


class PropertyListResponse(BaseModel):
    properties: List[PropertyResponse]
    count: int
    search_location: Optional[SearchLocation] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PropertyCreate(BaseModel):
    """Manually submitted property. upsideScore is always computed server side."""
    name: str = Field(..., min_length=1)
    external_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    price: Optional[float] = Field(None, ge=0)
    sqft: Optional[int] = Field(None, ge=0)
    vacancy_rate: Optional[float] = Field(None, ge=0, le=100)
    cap_rate: Optional[float] = Field(None, ge=0)
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    tenant_count: Optional[int] = None
    listing_url: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    google_place_id: Optional[str] = None
    google_rating: Optional[float] = None
    source: str = "manual"

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PropertyUpsertResponse(BaseModel):
    property: Optional[PropertyResponse] = None


def property_response(prop, distance: Optional[float] = None) -> PropertyResponse:
    """Response model for a stored or in-memory property."""
    response = PropertyResponse.model_validate(prop)
    if not response.image_url:
        response.image_url = getattr(prop, "fallback_image_url", None)
    response.last_updated = getattr(prop, "updated_at", None) or getattr(prop, "scraped_at", None)
    if distance is not None:
        response.distance = round(distance, 2)
    return response


# =============================================================================
# Helpers
# =============================================================================

def _csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_bounds(bounds: str) -> tuple[float, float, float, float]:
    """'swLat,swLng,neLat,neLng' -> floats."""
    parts = bounds.split(",")
    if len(parts) != 4:
        raise api_error(400, "Invalid bounds", "Expected bounds=swLat,swLng,neLat,neLng")
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise api_error(400, "Invalid bounds", f"Non-numeric value in '{bounds}'")


# =============================================================================
# Endpoints
# =============================================================================

@router.get("", response_model=PropertyListResponse)
async def list_properties(
    request: Request,
    city: Optional[str] = None,
    state: Optional[str] = None,
    states: Optional[str] = Query(None, description="Comma separated state codes"),
    property_types: Optional[str] = Query(None, alias="propertyTypes", description="Comma separated"),
    source: Optional[str] = None,
    search: Optional[str] = Query(None, description="Substring of name, address or city"),
    min_upside_score: Optional[float] = Query(None, alias="minUpsideScore"),
    min_upside: Optional[float] = Query(None, alias="minUpside"),
    min_cap_rate: Optional[float] = Query(None, alias="minCapRate"),
    max_cap_rate: Optional[float] = Query(None, alias="maxCapRate"),
    min_vacancy: Optional[float] = Query(None, alias="minVacancy"),
    max_vacancy: Optional[float] = Query(None, alias="maxVacancy"),
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    sw_lat: Optional[float] = Query(None, alias="swLat"),
    sw_lng: Optional[float] = Query(None, alias="swLng"),
    ne_lat: Optional[float] = Query(None, alias="neLat"),
    ne_lng: Optional[float] = Query(None, alias="neLng"),
    bounds: Optional[str] = Query(None, description="swLat,swLng,neLat,neLng"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    location: Optional[str] = Query(None, description="Place name to search around"),
    radius: Optional[float] = Query(None, gt=0, description="Radius in miles"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db)
):
    """
    Search properties.

    Every filter is optional and they all AND together. Results carry a
    distance (miles) when a search origin is given via lat/lng or location.
    """
    settings = request.app.state.settings

    if bounds:
        sw_lat, sw_lng, ne_lat, ne_lng = _parse_bounds(bounds)
    bounds_values = [sw_lat, sw_lng, ne_lat, ne_lng]
    if any(v is not None for v in bounds_values) and None in bounds_values:
        raise api_error(400, "Invalid bounds", "swLat, swLng, neLat and neLng must be given together")

    if (lat is None) != (lng is None):
        raise api_error(400, "Invalid search origin", "lat and lng must be given together")

    search_location = None
    if lat is not None:
        search_location = SearchLocation(lat=lat, lng=lng)
    elif location:
        try:
            coords = await request.app.state.geocoder.geocode(location)
        except GeocodingError as e:
            raise api_error(502, "Geocoding failed", str(e))
        if not coords:
            raise api_error(400, "Location not found", f"Could not geocode '{location}'")
        search_location = SearchLocation(lat=coords[0], lng=coords[1])
        radius = radius or settings.DEFAULT_RADIUS_MILES

    limit = min(limit or settings.DEFAULT_QUERY_LIMIT, settings.MAX_QUERY_LIMIT)

    q = PropertyQuery(
        city=city,
        state=state,
        states=_csv(states),
        property_types=_csv(property_types),
        source=source,
        search=search,
        min_upside_score=min_upside_score if min_upside_score is not None else min_upside,
        min_cap_rate=min_cap_rate,
        max_cap_rate=max_cap_rate,
        min_vacancy=min_vacancy,
        max_vacancy=max_vacancy,
        min_price=min_price,
        max_price=max_price,
        sw_lat=sw_lat,
        sw_lng=sw_lng,
        ne_lat=ne_lat,
        ne_lng=ne_lng,
        center_lat=search_location.lat if search_location else None,
        center_lng=search_location.lng if search_location else None,
        radius_miles=radius if search_location else None,
        sort_by=parse_sort_key(sort_by),
        limit=limit,
    )

    results = search_properties(db, q)
    return PropertyListResponse(
        properties=[property_response(r.property, r.distance) for r in results],
        count=len(results),
        search_location=search_location,
    )


@router.post("", response_model=PropertyUpsertResponse)
def upsert_property_endpoint(
    request: Request,
    property_data: PropertyCreate,
    db: Session = Depends(get_db)
):
    """
    Create or update a property.

    With an externalId an existing row is updated in place. Returns
    {"property": null} when the record has no usable location.
    """
    record = ManualRecord(**property_data.model_dump())
    prop = request.app.state.normalizer.normalize(record)
    if prop is None:
        return PropertyUpsertResponse(property=None)

    score_property(prop, request.app.state.settings.MARKET_VACANCY_RATE)

    try:
        db_property = upsert_property(db, prop)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save property '{prop.name}': {e}", exc_info=True)
        raise api_error(500, "Failed to save property", str(e))

    return PropertyUpsertResponse(property=property_response(db_property))


@router.get("/{property_id}", response_model=PropertyResponse)
def get_property_endpoint(
    property_id: int,
    db: Session = Depends(get_db)
):
    db_property = get_property(db, property_id)
    if not db_property:
        raise api_error(404, "Property not found", f"No property with id {property_id}")
    return property_response(db_property)
