"""
Record normalization.

Collectors emit one of three record shapes, one per source kind:

- ScrapedListingRecord: raw card text from a listing site (LoopNet, CREXi)
- PlaceRecord: a Google Places nearby-search result
- ManualRecord: fields submitted through the API or the sample seed

RecordNormalizer.normalize() maps any of them onto CanonicalProperty, the
in-memory shape of a `properties` row. Parsing is best effort: bad text
degrades to empty strings or zero, and only records with neither a name
nor any usable location are dropped.
"""

import hashlib
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

STREET_VIEW_URL = "https://maps.googleapis.com/maps/api/streetview"
PLACE_PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"
MAX_PLACE_PHOTOS = 5
UNNAMED_PROPERTY = "Retail Property"

STATE_ZIP_RE = re.compile(r"\b([A-Z]{2})\b(?:\s*(\d{5}))?")
COUNTRY_SEGMENTS = {"usa", "us", "united states", "united states of america"}
PRICE_RE = re.compile(
    r"(\d[\d,]*(?:\.\d+)?)\s*(million|mil|mm|m|thousand|k)?\b", re.IGNORECASE
)
FIRST_INT_RE = re.compile(r"\d[\d,]*")
DECIMAL_RE = re.compile(r"\d+(?:\.\d+)?")
LISTING_ID_RE = re.compile(r"/(\d{4,})(?=/|$)")

PRICE_MULTIPLIERS = {
    "million": 1_000_000,
    "mil": 1_000_000,
    "mm": 1_000_000,
    "m": 1_000_000,
    "thousand": 1_000,
    "k": 1_000,
}


# =============================================================================
# Source records
# =============================================================================

@dataclass
class ScrapedListingRecord:
    """Best-effort text pulled off a listing card."""
    kind = "scraped"

    source: str  # 'LoopNet', 'CREXi'
    name: Optional[str] = None
    address: Optional[str] = None  # Free text, "123 Main St, Denver, CO 80202"
    price_text: Optional[str] = None
    sqft_text: Optional[str] = None
    cap_rate_text: Optional[str] = None
    vacancy_text: Optional[str] = None
    type_text: Optional[str] = None
    listing_url: Optional[str] = None
    image_url: Optional[str] = None
    search_location: Optional[str] = None  # What the collector searched, "Denver, CO"
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class PlaceRecord:
    """A nearby-search result from the places provider."""
    kind = "places"

    place_id: str
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    types: list[str] = field(default_factory=list)
    rating: Optional[float] = None
    photo_references: list[str] = field(default_factory=list)
    source: str = "Google Places"


@dataclass
class ManualRecord:
    """Already-structured fields (API submission, sample data)."""
    kind = "manual"

    name: Optional[str] = None
    external_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price: Optional[float] = None
    sqft: Optional[int] = None
    vacancy_rate: Optional[float] = None
    cap_rate: Optional[float] = None
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    tenant_count: Optional[int] = None
    listing_url: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[list[str]] = None
    google_place_id: Optional[str] = None
    google_rating: Optional[float] = None
    source: str = "manual"


SourceRecord = Union[ScrapedListingRecord, PlaceRecord, ManualRecord]


@dataclass
class CanonicalProperty:
    """In-memory form of a properties row, before it is persisted."""
    name: str
    source: str
    external_id: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price: Optional[float] = None
    sqft: Optional[int] = None
    vacancy_rate: Optional[float] = None
    cap_rate: Optional[float] = None
    upside_score: Optional[int] = None
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    lot_size: Optional[float] = None
    tenant_count: Optional[int] = None
    listing_url: Optional[str] = None
    image_url: Optional[str] = None
    images: list[str] = field(default_factory=list)
    google_place_id: Optional[str] = None
    google_rating: Optional[float] = None
    # Street View image, only used when no listing photo is known
    fallback_image_url: Optional[str] = None

    @property
    def price_per_sqft(self) -> float:
        if self.price and self.sqft:
            return self.price / self.sqft
        return 0.0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_row(self) -> dict:
        """Column values for the properties table."""
        return {
            "external_id": self.external_id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "price": self.price,
            "sqft": self.sqft,
            "vacancy_rate": self.vacancy_rate,
            "cap_rate": self.cap_rate,
            "upside_score": self.upside_score,
            "property_type": self.property_type,
            "year_built": self.year_built,
            "lot_size": self.lot_size,
            "tenant_count": self.tenant_count,
            "listing_url": self.listing_url,
            "image_url": self.image_url or self.fallback_image_url,
            "images": self.images or None,
            "source": self.source,
            "google_place_id": self.google_place_id,
            "google_rating": self.google_rating,
        }


# =============================================================================
# Parsing helpers
# =============================================================================

def parse_address(full_address: Optional[str]) -> dict:
    """
    Split "street, city, ST 12345" into its parts.

    Heuristic only: the first segment is the street, the second the city,
    and the last segment (ignoring a trailing country) is searched for a
    two-letter state and an optional 5-digit zip.
    """
    result = {"address": "", "city": "", "state": "", "zip": ""}
    if not full_address or not full_address.strip():
        return result

    parts = [p.strip() for p in full_address.split(",") if p.strip()]
    if len(parts) > 1 and parts[-1].lower() in COUNTRY_SEGMENTS:
        parts = parts[:-1]
    if not parts:
        return result

    result["address"] = parts[0]
    if len(parts) > 1:
        result["city"] = parts[1]
        match = STATE_ZIP_RE.search(parts[-1])
        if match:
            result["state"] = match.group(1)
            result["zip"] = match.group(2) or ""
            # "Denver CO 80202" style city+state in a single last segment
            if len(parts) == 2 and match.start() > 0:
                result["city"] = parts[1][:match.start()].strip()
            elif len(parts) == 2 and match.start() == 0:
                result["city"] = ""
    return result


def parse_price(price_str: Optional[str]) -> float:
    """Parse "$1.2M" / "$850,000" / "Call for pricing" to a float (0 when unknown)."""
    if not price_str:
        return 0.0
    match = PRICE_RE.search(price_str)
    if not match:
        return 0.0
    try:
        value = float(match.group(1).replace(",", ""))
    except ValueError:
        return 0.0
    unit = (match.group(2) or "").lower()
    return value * PRICE_MULTIPLIERS.get(unit, 1)


def parse_sqft(sqft_str: Optional[str]) -> int:
    """First integer in the text, commas dropped. "12,500 SF" -> 12500."""
    if not sqft_str:
        return 0
    match = FIRST_INT_RE.search(sqft_str)
    if not match:
        return 0
    return int(match.group(0).replace(",", ""))


def parse_acres(acres_str: Optional[str]) -> float:
    if not acres_str:
        return 0.0
    match = DECIMAL_RE.search(acres_str.replace(",", ""))
    return float(match.group(0)) if match else 0.0


def parse_cap_rate(cap_rate_str: Optional[str]) -> float:
    """First decimal number found. "Cap Rate 6.75%" -> 6.75."""
    if not cap_rate_str:
        return 0.0
    match = DECIMAL_RE.search(cap_rate_str)
    return float(match.group(0)) if match else 0.0


def parse_vacancy(vacancy_str: Optional[str]) -> Optional[float]:
    """Vacancy percent from "15% vacant" or "85% leased". None when absent."""
    if not vacancy_str:
        return None
    match = DECIMAL_RE.search(vacancy_str)
    if not match:
        return None
    pct = float(match.group(0))
    if pct > 100:
        return None
    lowered = vacancy_str.lower()
    if "leased" in lowered or "occupied" in lowered:
        return round(100 - pct, 2)
    return pct


def normalize_listing_type(type_str: Optional[str]) -> str:
    """Normalize listing-site property type text to our retail categories."""
    if not type_str:
        return "retail"

    type_lower = type_str.lower()

    if "mall" in type_lower:
        return "mall"
    elif any(x in type_lower for x in ["strip", "shopping center", "plaza", "multi-tenant"]):
        return "strip-center"
    elif any(x in type_lower for x in ["mixed", "multi-use"]):
        return "mixed-use"
    elif any(x in type_lower for x in ["freestanding", "free-standing", "standalone", "single tenant", "net lease"]):
        return "standalone"
    else:
        return "retail"


def place_types_to_property_type(types: list[str]) -> str:
    if "shopping_mall" in types:
        return "mall"
    if "department_store" in types:
        return "standalone"
    if "supermarket" in types or "grocery_or_supermarket" in types:
        return "standalone"
    return "strip-center"


def listing_external_id(prefix: str, listing_url: Optional[str], fallback_key: str = "") -> Optional[str]:
    """
    Deterministic id for a listing: the numeric listing id in its URL when
    there is one, else a hash of the URL (or of fallback_key).
    """
    if listing_url:
        parts = urlsplit(listing_url.strip())
        path = parts.path.rstrip("/")
        match = LISTING_ID_RE.search(path)
        if match:
            return f"{prefix}-{match.group(1)}"
        canonical = f"{parts.netloc.lower()}{path}"
        return f"{prefix}-{hashlib.sha1(canonical.encode('utf-8')).hexdigest()[:16]}"
    if fallback_key.strip():
        return f"{prefix}-{hashlib.sha1(fallback_key.lower().encode('utf-8')).hexdigest()[:16]}"
    return None


def _valid_coordinates(lat: Optional[float], lng: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """(0, 0) and out-of-range values mean unknown."""
    if lat is None or lng is None:
        return None, None
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return None, None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None, None
    if lat == 0 and lng == 0:
        return None, None
    return lat, lng


def _clean(value: Optional[str]) -> str:
    return " ".join(value.split()) if value else ""


# =============================================================================
# Normalizer
# =============================================================================

class RecordNormalizer:
    """
    Maps source records onto CanonicalProperty.

    Usage:
        normalizer = RecordNormalizer(google_api_key=settings.google_api_key)
        prop = normalizer.normalize(record)  # None when the record is dropped
    """

    def __init__(
        self,
        google_api_key: Optional[str] = None,
        synthesize_missing_vacancy: bool = False,
        rng: Optional[random.Random] = None,
    ):
        self.google_api_key = google_api_key
        self.synthesize_missing_vacancy = synthesize_missing_vacancy
        self.rng = rng or random.Random()

    def normalize(self, record: SourceRecord) -> Optional[CanonicalProperty]:
        if isinstance(record, ScrapedListingRecord):
            prop = self._from_scraped(record)
        elif isinstance(record, PlaceRecord):
            prop = self._from_place(record)
        elif isinstance(record, ManualRecord):
            prop = self._from_manual(record)
        else:
            raise TypeError(f"Unsupported source record: {type(record).__name__}")

        if not prop.name:
            prop.name = prop.address
        if not prop.name and not (prop.has_coordinates or prop.city):
            logger.debug(f"Dropping {record.kind} record without name or location: {record!r}")
            return None
        if not prop.name:
            prop.name = UNNAMED_PROPERTY

        if not prop.image_url and prop.images:
            prop.image_url = prop.images[0]
        if not prop.image_url and prop.has_coordinates:
            prop.fallback_image_url = self.street_view_url(prop.latitude, prop.longitude)
        return prop

    def street_view_url(self, lat: float, lng: float, width: int = 600, height: int = 400) -> Optional[str]:
        if not self.google_api_key:
            return None
        return f"{STREET_VIEW_URL}?size={width}x{height}&location={lat},{lng}&key={self.google_api_key}"

    def photo_url(self, photo_reference: str, max_width: int = 400) -> Optional[str]:
        if not self.google_api_key:
            return None
        return f"{PLACE_PHOTO_URL}?maxwidth={max_width}&photo_reference={photo_reference}&key={self.google_api_key}"

    def _from_scraped(self, record: ScrapedListingRecord) -> CanonicalProperty:
        parsed = parse_address(record.address)
        city = parsed["city"]
        if not city and record.search_location:
            city = record.search_location.split(",")[0].strip().title()
        lat, lng = _valid_coordinates(record.latitude, record.longitude)

        sqft = 0
        lot_size = 0.0
        if record.sqft_text and "acre" in record.sqft_text.lower():
            lot_size = parse_acres(record.sqft_text)
        else:
            sqft = parse_sqft(record.sqft_text)

        vacancy = parse_vacancy(record.vacancy_text)
        if vacancy is None and self.synthesize_missing_vacancy:
            vacancy = float(self.rng.randint(5, 29))

        images = [record.image_url] if record.image_url else []
        prefix = record.source.lower().replace(" ", "")
        fallback_key = "|".join([_clean(record.name), parsed["address"], city])

        return CanonicalProperty(
            name=_clean(record.name),
            source=record.source,
            external_id=listing_external_id(prefix, record.listing_url, fallback_key),
            address=parsed["address"],
            city=city,
            state=parsed["state"],
            zip=parsed["zip"],
            latitude=lat,
            longitude=lng,
            price=parse_price(record.price_text),
            sqft=sqft,
            vacancy_rate=vacancy,
            cap_rate=parse_cap_rate(record.cap_rate_text),
            property_type=normalize_listing_type(record.type_text),
            lot_size=lot_size,
            listing_url=record.listing_url,
            image_url=record.image_url,
            images=images,
        )

    def _from_place(self, record: PlaceRecord) -> CanonicalProperty:
        parsed = parse_address(record.formatted_address)
        lat, lng = _valid_coordinates(record.latitude, record.longitude)
        images = []
        for ref in record.photo_references[:MAX_PLACE_PHOTOS]:
            url = self.photo_url(ref)
            if url:
                images.append(url)

        return CanonicalProperty(
            name=_clean(record.name),
            source=record.source,
            external_id=f"google-{record.place_id}",
            address=parsed["address"],
            city=parsed["city"],
            state=parsed["state"],
            zip=parsed["zip"],
            latitude=lat,
            longitude=lng,
            # Places carries no financials
            price=0.0,
            sqft=0,
            vacancy_rate=None,
            cap_rate=0.0,
            property_type=place_types_to_property_type(record.types),
            lot_size=0.0,
            listing_url=f"https://www.google.com/maps/place/?q=place_id:{record.place_id}",
            images=images,
            google_place_id=record.place_id,
            google_rating=record.rating,
        )

    def _from_manual(self, record: ManualRecord) -> CanonicalProperty:
        address = record.address or ""
        city = record.city or ""
        state = record.state or ""
        zip_code = record.zip or ""
        if address and "," in address and not city:
            parsed = parse_address(address)
            address, city = parsed["address"], parsed["city"]
            state = state or parsed["state"]
            zip_code = zip_code or parsed["zip"]
        lat, lng = _valid_coordinates(record.latitude, record.longitude)
        images = list(record.images or [])
        if record.image_url and record.image_url not in images:
            images.insert(0, record.image_url)

        return CanonicalProperty(
            name=_clean(record.name),
            source=record.source or "manual",
            external_id=record.external_id or None,
            address=address.strip(),
            city=city.strip(),
            state=state.strip().upper(),
            zip=zip_code.strip(),
            latitude=lat,
            longitude=lng,
            price=record.price,
            sqft=record.sqft,
            vacancy_rate=record.vacancy_rate,
            cap_rate=record.cap_rate,
            property_type=record.property_type,
            year_built=record.year_built,
            lot_size=record.lot_size,
            tenant_count=record.tenant_count,
            listing_url=record.listing_url,
            image_url=record.image_url,
            images=images,
            google_place_id=record.google_place_id,
            google_rating=record.google_rating,
        )
