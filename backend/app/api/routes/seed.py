"""
Seed API route - load bundled sample properties.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.errors import api_error
from app.core.database import get_db
from app.services.seed import seed_sample_properties

router = APIRouter(prefix="/seed", tags=["seed"])
logger = logging.getLogger(__name__)


@router.post("")
def seed(request: Request, db: Session = Depends(get_db)):
    """Insert sample properties. Rows already stored are left untouched."""
    try:
        count = seed_sample_properties(
            db,
            request.app.state.normalizer,
            market_vacancy_rate=request.app.state.settings.MARKET_VACANCY_RATE,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Seed failed: {e}", exc_info=True)
        raise api_error(500, "Failed to seed database", str(e))

    return {"success": True, "seeded": count, "message": f"Seeded {count} properties"}
