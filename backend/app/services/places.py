"""
Google Places collector.
Finds retail places (malls, department stores, supermarkets, stores) within
a radius of a point via the Nearby Search API.
"""
import asyncio
import logging
from typing import Optional

import httpx

from app.services.collectors import Collector, CollectionContext, CollectorError
from app.services.normalizer import PlaceRecord
from app.utils.geo import miles_to_meters

logger = logging.getLogger(__name__)

NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

# Google Places types searched, in order
RETAIL_PLACE_TYPES = [
    "shopping_mall",
    "department_store",
    "store",
    "supermarket",
]

# Nearby Search rejects larger radii
MAX_RADIUS_METERS = 50000


def place_to_record(place: dict) -> Optional[PlaceRecord]:
    """Convert one Nearby Search result to a PlaceRecord."""
    place_id = place.get("place_id")
    if not place_id:
        return None
    geometry = place.get("geometry", {}).get("location", {})
    return PlaceRecord(
        place_id=place_id,
        name=place.get("name"),
        formatted_address=place.get("formatted_address") or place.get("vicinity"),
        latitude=geometry.get("lat"),
        longitude=geometry.get("lng"),
        types=place.get("types", []),
        rating=place.get("rating"),
        photo_references=[
            p["photo_reference"] for p in place.get("photos", []) if p.get("photo_reference")
        ],
    )


async def fetch_nearby_places(
    latitude: float,
    longitude: float,
    radius_meters: int,
    api_key: str,
    place_types: Optional[list[str]] = None,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    request_delay: float = 0.2,
) -> list[PlaceRecord]:
    """
    Fetch retail places around a point, de-duplicated by place_id.

    A failed request for one place type is logged and skipped. If every
    request fails, CollectorError is raised.
    """
    radius_meters = min(radius_meters, MAX_RADIUS_METERS)
    place_types = place_types or RETAIL_PLACE_TYPES

    records: list[PlaceRecord] = []
    seen_place_ids: set[str] = set()
    errors: list[str] = []

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        for place_type in place_types:
            params = {
                "location": f"{latitude},{longitude}",
                "radius": radius_meters,
                "type": place_type,
                "key": api_key,
            }

            try:
                response = await client.get(NEARBY_SEARCH_URL, params=params)
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Google Places request failed for type {place_type}: {e}")
                errors.append(f"{place_type}: {e}")
                continue

            status = data.get("status")
            if status not in ["OK", "ZERO_RESULTS"]:
                logger.error(f"Google Places API error for type {place_type}: {status}")
                errors.append(f"{place_type}: {status} {data.get('error_message', '')}".strip())
                continue

            results = data.get("results", [])
            logger.info(f"Found {len(results)} {place_type} places")
            for place in results:
                record = place_to_record(place)
                if record is None or record.place_id in seen_place_ids:
                    continue
                seen_place_ids.add(record.place_id)
                records.append(record)

            if request_delay:
                await asyncio.sleep(request_delay)

    if errors and len(errors) == len(place_types):
        raise CollectorError(f"All Google Places requests failed: {'; '.join(errors)}")

    return records


class GooglePlacesCollector(Collector):
    """Nearby retail places around the search point."""

    name = "places"
    requires_coordinates = True

    def __init__(
        self,
        api_key: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_delay: float = 0.2,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.request_delay = request_delay

    async def collect(self, context: CollectionContext) -> list[PlaceRecord]:
        if not self.api_key:
            raise CollectorError("Google Places API key not configured")

        logger.info(
            f"Starting Google Places search at: {context.latitude}, {context.longitude}, "
            f"radius: {context.radius_miles}mi"
        )
        records = await fetch_nearby_places(
            context.latitude,
            context.longitude,
            miles_to_meters(context.radius_miles),
            self.api_key,
            timeout=self.timeout,
            transport=self.transport,
            request_delay=self.request_delay,
        )
        logger.info(f"Google Places search complete: {len(records)} places")
        return records
