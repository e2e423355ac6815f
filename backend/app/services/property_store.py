"""
Property persistence - the upsert contract.

Rows are keyed on external_id. On conflict the volatile fields are
overwritten (last write wins), media and descriptive fields are only
replaced by non-null new values (a Street View fallback image only fills
an empty image_url), location fields already known are kept,
and created_at is never touched.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Text, func, literal, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models.property import Property
from app.services.normalizer import CanonicalProperty

logger = logging.getLogger(__name__)

# Overwritten on every re-ingestion
VOLATILE_COLUMNS = ("name", "price", "vacancy_rate", "cap_rate", "upside_score", "scraped_at", "updated_at")

# New non-null value wins, otherwise the stored one is kept
REFRESHABLE_COLUMNS = (
    "images",
    "sqft",
    "lot_size",
    "year_built",
    "tenant_count",
    "property_type",
    "listing_url",
    "google_rating",
)

# Stored value wins, new value only fills gaps
IDENTITY_TEXT_COLUMNS = ("address", "city", "state", "zip", "google_place_id")
IDENTITY_COLUMNS = ("latitude", "longitude")


class UnsupportedDatabaseError(RuntimeError):
    pass


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise UnsupportedDatabaseError(f"Upsert not supported on {dialect}")


def _reload(session: Session, property_id: int) -> Property:
    stmt = select(Property).where(Property.id == property_id).execution_options(populate_existing=True)
    return session.execute(stmt).scalar_one()


def upsert_property(
    session: Session,
    prop: CanonicalProperty,
    now: Optional[datetime] = None,
    update_existing: bool = True,
) -> Optional[Property]:
    """
    Insert or update one property. Does not commit.

    Returns the stored row, or None when update_existing is False and the
    external id was already present.
    """
    now = now or datetime.now(timezone.utc)
    row = prop.to_row()
    row.update(scraped_at=now, updated_at=now, created_at=now)

    if not prop.external_id:
        db_property = Property(**row)
        session.add(db_property)
        session.flush()
        return db_property

    insert = _insert_for(session)
    stmt = insert(Property).values(**row)

    if update_existing:
        excluded = stmt.excluded
        set_ = {col: excluded[col] for col in VOLATILE_COLUMNS}
        for col in REFRESHABLE_COLUMNS:
            set_[col] = func.coalesce(excluded[col], Property.__table__.c[col])
        # A Street View fallback never replaces a stored listing photo
        set_["image_url"] = func.coalesce(
            literal(prop.image_url, Text),
            Property.__table__.c.image_url,
            literal(prop.fallback_image_url, Text),
        )
        for col in IDENTITY_TEXT_COLUMNS:
            set_[col] = func.coalesce(func.nullif(Property.__table__.c[col], ""), excluded[col])
        for col in IDENTITY_COLUMNS:
            set_[col] = func.coalesce(Property.__table__.c[col], excluded[col])
        stmt = stmt.on_conflict_do_update(index_elements=[Property.external_id], set_=set_)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=[Property.external_id])

    property_id = session.execute(stmt.returning(Property.id)).scalar_one_or_none()
    if property_id is None:
        return None
    return _reload(session, property_id)


def get_property(session: Session, property_id: int) -> Optional[Property]:
    return session.get(Property, property_id)
