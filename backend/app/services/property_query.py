"""
Property search: attribute filters, viewport bounds and radius search.

All filters AND together and an unset filter means no constraint. A
radius search first narrows candidates with a bounding box derived from
the radius (cheap, index friendly) and then keeps only the rows whose
haversine distance from the center is within the radius.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from app.models.property import Property
from app.utils.geo import bounding_box_for_radius, haversine

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class SortKey(str, Enum):
    UPSIDE_SCORE = "upsideScore"
    PRICE = "price"
    CAP_RATE = "capRate"
    VACANCY = "vacancy"
    DISTANCE = "distance"


SORT_ALIASES = {
    "upsidescore": SortKey.UPSIDE_SCORE,
    "upside_score": SortKey.UPSIDE_SCORE,
    "upside": SortKey.UPSIDE_SCORE,
    "price": SortKey.PRICE,
    "caprate": SortKey.CAP_RATE,
    "cap_rate": SortKey.CAP_RATE,
    "vacancy": SortKey.VACANCY,
    "vacancyrate": SortKey.VACANCY,
    "vacancy_rate": SortKey.VACANCY,
    "distance": SortKey.DISTANCE,
}

ORDERINGS = {
    SortKey.UPSIDE_SCORE: Property.upside_score.desc().nulls_last(),
    SortKey.PRICE: Property.price.asc().nulls_last(),
    SortKey.CAP_RATE: Property.cap_rate.desc().nulls_last(),
    SortKey.VACANCY: Property.vacancy_rate.desc().nulls_last(),
}


def parse_sort_key(value: Optional[str]) -> SortKey:
    """Map a sortBy parameter onto a SortKey, defaulting to upside score."""
    if not value:
        return SortKey.UPSIDE_SCORE
    return SORT_ALIASES.get(value.strip().lower(), SortKey.UPSIDE_SCORE)


@dataclass
class PropertyQuery:
    """Search criteria. None means "no constraint" for every field."""
    city: Optional[str] = None
    state: Optional[str] = None
    states: list[str] = field(default_factory=list)
    property_types: list[str] = field(default_factory=list)
    source: Optional[str] = None
    search: Optional[str] = None

    min_upside_score: Optional[float] = None
    min_cap_rate: Optional[float] = None
    max_cap_rate: Optional[float] = None
    min_vacancy: Optional[float] = None
    max_vacancy: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    # Viewport
    sw_lat: Optional[float] = None
    sw_lng: Optional[float] = None
    ne_lat: Optional[float] = None
    ne_lng: Optional[float] = None

    # Search origin and optional radius
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    radius_miles: Optional[float] = None

    sort_by: SortKey = SortKey.UPSIDE_SCORE
    limit: int = DEFAULT_LIMIT

    @property
    def has_bounds(self) -> bool:
        return None not in (self.sw_lat, self.sw_lng, self.ne_lat, self.ne_lng)

    @property
    def has_origin(self) -> bool:
        return self.center_lat is not None and self.center_lng is not None

    @property
    def is_radius_search(self) -> bool:
        return self.has_origin and self.radius_miles is not None


@dataclass
class PropertyResult:
    property: Property
    distance: Optional[float] = None  # Miles from the search origin


def _bounds_conditions(sw_lat: float, sw_lng: float, ne_lat: float, ne_lng: float) -> list:
    conditions = [
        Property.latitude.isnot(None),
        Property.longitude.isnot(None),
        Property.latitude.between(sw_lat, ne_lat),
    ]
    if sw_lng <= ne_lng:
        conditions.append(Property.longitude.between(sw_lng, ne_lng))
    else:
        # Viewport spans the antimeridian
        conditions.append(or_(Property.longitude >= sw_lng, Property.longitude <= ne_lng))
    return conditions


def build_conditions(q: PropertyQuery) -> list:
    """WHERE clauses for everything except the exact radius check."""
    conditions = []

    if q.city:
        conditions.append(func.lower(Property.city).contains(q.city.strip().lower(), autoescape=True))
    if q.state:
        conditions.append(func.upper(Property.state) == q.state.strip().upper())
    if q.states:
        conditions.append(func.upper(Property.state).in_([s.strip().upper() for s in q.states]))
    if q.property_types:
        conditions.append(Property.property_type.in_(q.property_types))
    if q.source:
        conditions.append(func.lower(Property.source) == q.source.strip().lower())
    if q.search:
        term = q.search.strip().lower()
        conditions.append(or_(
            func.lower(Property.name).contains(term, autoescape=True),
            func.lower(Property.address).contains(term, autoescape=True),
            func.lower(Property.city).contains(term, autoescape=True),
        ))

    if q.min_upside_score is not None:
        conditions.append(Property.upside_score >= q.min_upside_score)
    if q.min_cap_rate is not None:
        conditions.append(Property.cap_rate >= q.min_cap_rate)
    if q.max_cap_rate is not None:
        conditions.append(Property.cap_rate <= q.max_cap_rate)
    if q.min_vacancy is not None:
        conditions.append(Property.vacancy_rate >= q.min_vacancy)
    if q.max_vacancy is not None:
        conditions.append(Property.vacancy_rate <= q.max_vacancy)
    if q.min_price is not None:
        conditions.append(Property.price >= q.min_price)
    if q.max_price is not None:
        conditions.append(Property.price <= q.max_price)

    if q.has_bounds:
        conditions.extend(_bounds_conditions(q.sw_lat, q.sw_lng, q.ne_lat, q.ne_lng))

    if q.is_radius_search:
        conditions.extend(_bounds_conditions(*bounding_box_for_radius(q.center_lat, q.center_lng, q.radius_miles)))

    return conditions


def _distance(q: PropertyQuery, prop: Property) -> Optional[float]:
    if not q.has_origin or prop.latitude is None or prop.longitude is None:
        return None
    return haversine(q.center_lat, q.center_lng, prop.latitude, prop.longitude)


def search_properties(session: Session, q: PropertyQuery) -> list[PropertyResult]:
    """
    Run a property search. Read-only.

    Returns at most q.limit results. Sorting by distance without a search
    origin falls back to upside score. Nulls sort last in every ordering.
    """
    sort_by = q.sort_by
    if sort_by == SortKey.DISTANCE and not q.has_origin:
        logger.debug("Distance sort requested without an origin, using upside score")
        sort_by = SortKey.UPSIDE_SCORE

    stmt = select(Property)
    conditions = build_conditions(q)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    limit = max(int(q.limit), 0)

    if sort_by == SortKey.DISTANCE:
        results = [PropertyResult(p, _distance(q, p)) for p in session.scalars(stmt)]
        if q.is_radius_search:
            results = [r for r in results if r.distance is not None and r.distance <= q.radius_miles]
        results.sort(key=lambda r: (r.distance is None, r.distance or 0.0, r.property.id))
        return results[:limit]

    stmt = stmt.order_by(ORDERINGS[sort_by], Property.id.asc())

    if not q.is_radius_search:
        return [PropertyResult(p, _distance(q, p)) for p in session.scalars(stmt.limit(limit))]

    results = []
    for prop in session.scalars(stmt):
        if len(results) >= limit:
            break
        distance = _distance(q, prop)
        if distance is not None and distance <= q.radius_miles:
            results.append(PropertyResult(prop, distance))
    return results
