"""
Seed the properties table with bundled sample data.

Existing rows are never touched: a sample whose external id is already
stored is skipped.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from app.services.normalizer import ManualRecord, RecordNormalizer
from app.services.property_store import upsert_property
from app.services.scoring import DEFAULT_MARKET_VACANCY_RATE, score_property

logger = logging.getLogger(__name__)

SAMPLE_DATA_PATH = Path(__file__).resolve().parent.parent / "data" / "sample_properties.json"


def load_sample_records(path: Path = SAMPLE_DATA_PATH) -> list[ManualRecord]:
    with open(path, encoding="utf-8") as f:
        return [ManualRecord(**item) for item in json.load(f)]


def seed_sample_properties(
    db: Session,
    normalizer: RecordNormalizer,
    market_vacancy_rate: float = DEFAULT_MARKET_VACANCY_RATE,
    records: Optional[list[ManualRecord]] = None,
) -> int:
    """Insert sample properties that are not stored yet. Returns how many were inserted."""
    records = load_sample_records() if records is None else records
    now = datetime.now(timezone.utc)

    inserted = 0
    for record in records:
        prop = normalizer.normalize(record)
        if prop is None:
            continue
        score_property(prop, market_vacancy_rate)
        if upsert_property(db, prop, now=now, update_existing=False) is not None:
            inserted += 1
    db.commit()

    logger.info(f"Seeded {inserted} of {len(records)} sample properties")
    return inserted
