"""
Saved Properties API endpoints.

A user bookmarks a property with optional notes.
"""

import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.errors import api_error
from app.api.routes.properties import PropertyResponse, property_response
from app.core.database import get_db
from app.models.property import Property
from app.models.saved_property import SavedProperty

router = APIRouter(prefix="/saved", tags=["saved"])
logger = logging.getLogger(__name__)


class SavedPropertyCreate(BaseModel):
    property_id: int
    user_id: str = Field(..., min_length=1)
    notes: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SavedPropertyResponse(BaseModel):
    id: int
    property_id: int
    user_id: str
    notes: Optional[str]
    created_at: Optional[datetime]
    property: Optional[PropertyResponse] = None

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class SavedPropertyListResponse(BaseModel):
    saved: List[SavedPropertyResponse]
    count: int


def _saved_response(saved: SavedProperty, prop: Optional[Property]) -> SavedPropertyResponse:
    response = SavedPropertyResponse.model_validate(saved)
    if prop is not None:
        response.property = property_response(prop)
    return response


@router.post("", response_model=SavedPropertyResponse)
def save_property(
    data: SavedPropertyCreate,
    db: Session = Depends(get_db)
):
    """Bookmark a property for a user."""
    prop = db.get(Property, data.property_id)
    if not prop:
        raise api_error(404, "Property not found", f"No property with id {data.property_id}")

    saved = SavedProperty(property_id=data.property_id, user_id=data.user_id, notes=data.notes)
    try:
        db.add(saved)
        db.commit()
        db.refresh(saved)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save property {data.property_id} for {data.user_id}: {e}", exc_info=True)
        raise api_error(500, "Failed to save property", str(e))

    return _saved_response(saved, prop)


@router.get("", response_model=SavedPropertyListResponse)
def list_saved_properties(
    user_id: str = Query(..., alias="userId", min_length=1),
    db: Session = Depends(get_db)
):
    """A user's saved properties, newest first."""
    rows = (
        db.query(SavedProperty, Property)
        .join(Property, Property.id == SavedProperty.property_id)
        .filter(SavedProperty.user_id == user_id)
        .order_by(SavedProperty.created_at.desc(), SavedProperty.id.desc())
        .all()
    )
    saved = [_saved_response(s, p) for s, p in rows]
    return SavedPropertyListResponse(saved=saved, count=len(saved))


@router.delete("/{saved_id}")
def delete_saved_property(
    saved_id: int,
    db: Session = Depends(get_db)
):
    """Remove a bookmark. The property itself is kept."""
    saved = db.get(SavedProperty, saved_id)
    if not saved:
        raise api_error(404, "Saved property not found", f"No saved property with id {saved_id}")

    db.delete(saved)
    db.commit()
    return {"success": True, "id": saved_id}
