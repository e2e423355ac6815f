import asyncio
import time
import logging
import threading
from typing import Optional, Tuple

from geopy.geocoders import GoogleV3, Nominatim
from geopy.exc import GeocoderTimedOut, GeocoderServiceError, GeopyError

from app.core.config import Settings

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """Geocoding provider unreachable or returned an error."""


class GeocodingService:
    """
    Place name <-> coordinates.

    Uses Google's geocoder when a Google key is configured, Nominatim
    otherwise. geopy is blocking, so the async methods run it in a worker
    thread and bound every call with a timeout.
    """

    def __init__(self, settings: Settings, geolocator=None):
        self.timeout = settings.GEOCODING_TIMEOUT_SECONDS
        if geolocator is not None:
            self.geolocator = geolocator
            self.rate_limit = 0.0
        elif settings.google_api_key:
            self.geolocator = GoogleV3(api_key=settings.google_api_key, timeout=self.timeout)
            self.rate_limit = 0.0
        else:
            self.geolocator = Nominatim(user_agent=settings.GEOCODING_USER_AGENT, timeout=self.timeout)
            self.rate_limit = settings.GEOCODING_RATE_LIMIT
        self.last_request_time = 0.0
        self._rate_lock = threading.Lock()

    def _rate_limit(self):
        """Enforce rate limiting between requests, across worker threads."""
        with self._rate_lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.rate_limit:
                time.sleep(self.rate_limit - elapsed)
            self.last_request_time = time.time()

    def geocode_sync(self, query: str, retries: int = 2) -> Optional[Tuple[float, float]]:
        """
        Geocode a free-text place name or address.

        Returns:
            Tuple of (latitude, longitude), or None if nothing matched.

        Raises:
            GeocodingError: the provider failed on every attempt.
        """
        last_error = None
        for attempt in range(retries):
            try:
                self._rate_limit()
                location = self.geolocator.geocode(query, timeout=self.timeout)
                if location:
                    logger.debug(f"Geocoded '{query}' -> ({location.latitude}, {location.longitude})")
                    return (location.latitude, location.longitude)
                logger.warning(f"Could not geocode: {query}")
                return None

            except GeocoderTimedOut as e:
                logger.warning(f"Geocoding timeout for '{query}', attempt {attempt + 1}/{retries}")
                last_error = e
                time.sleep(2 ** attempt)  # Exponential backoff

            except GeopyError as e:
                logger.error(f"Geocoding service error: {e}")
                last_error = e
                if not isinstance(e, GeocoderServiceError):
                    break

        raise GeocodingError(f"Failed to geocode '{query}': {last_error}")

    def reverse_sync(self, lat: float, lng: float) -> Optional[str]:
        """
        Resolve coordinates to a "City, ST" place name.

        Falls back to the provider's full address when the city or state
        component is missing.
        """
        try:
            self._rate_limit()
            location = self.geolocator.reverse((lat, lng), timeout=self.timeout)
        except GeopyError as e:
            raise GeocodingError(f"Failed to reverse geocode ({lat}, {lng}): {e}") from e

        if not location:
            logger.warning(f"Could not reverse geocode: ({lat}, {lng})")
            return None

        city, state = _city_state(location.raw or {})
        if city and state:
            return f"{city}, {state}"
        return location.address

    async def geocode(self, query: str) -> Optional[Tuple[float, float]]:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.geocode_sync, query), timeout=self.timeout * 3)
        except asyncio.TimeoutError as e:
            raise GeocodingError(f"Geocoding '{query}' timed out") from e

    async def reverse(self, lat: float, lng: float) -> Optional[str]:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.reverse_sync, lat, lng), timeout=self.timeout * 3)
        except asyncio.TimeoutError as e:
            raise GeocodingError(f"Reverse geocoding ({lat}, {lng}) timed out") from e


def _city_state(raw: dict) -> Tuple[Optional[str], Optional[str]]:
    """Pull city and state out of a Google or Nominatim raw payload."""
    # Google: address_components list
    city = state = None
    for component in raw.get("address_components", []):
        types = component.get("types", [])
        if "locality" in types:
            city = component.get("long_name")
        elif "administrative_area_level_1" in types:
            state = component.get("short_name")
    if city or state:
        return city, state

    # Nominatim: address dict (needs addressdetails, present on reverse)
    address = raw.get("address", {})
    city = address.get("city") or address.get("town") or address.get("village")
    state = address.get("state")
    return city, state
