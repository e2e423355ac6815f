"""
Property model - the canonical retail property record.

Rows are created and refreshed by the ingestion pipeline (upsert keyed on
external_id) or by manual submission. They are never hard-deleted.
"""

from sqlalchemy import Column, Integer, String, Float, Text, DateTime, JSON, Index
from sqlalchemy.sql import func

from app.core.database import Base


class Property(Base):
    """
    A retail property listing with its computed upside score.

    price_per_sqft is derived from price and sqft on read and is never
    stored as its own column.
    """
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, nullable=True)  # e.g. 'crexi-123', 'google-ChIJ...'

    name = Column(String(500), nullable=False)

    # Location
    address = Column(String(500))
    city = Column(String(100))
    state = Column(String(50))
    zip = Column(String(20))
    latitude = Column(Float)
    longitude = Column(Float)

    # Financials
    price = Column(Float)
    sqft = Column(Integer)
    vacancy_rate = Column(Float)
    cap_rate = Column(Float)

    # Scoring
    upside_score = Column(Integer)

    # Descriptive
    property_type = Column(String(50))  # strip-center, standalone, mall, mixed-use, retail
    year_built = Column(Integer)
    lot_size = Column(Float)
    tenant_count = Column(Integer)

    # Media
    image_url = Column(Text)
    images = Column(JSON(none_as_null=True))  # List of image URLs

    # Provenance
    source = Column(String(50))  # 'LoopNet', 'CREXi', 'Google Places', 'manual', 'sample'
    listing_url = Column(Text)
    google_place_id = Column(String(255))
    google_rating = Column(Float)

    # Timestamps
    scraped_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_properties_location", "latitude", "longitude"),
        Index("idx_properties_source", "source"),
        Index("idx_properties_city_state", "city", "state"),
    )

    @property
    def price_per_sqft(self) -> float:
        if self.price and self.sqft:
            return self.price / self.sqft
        return 0.0

    def __repr__(self):
        return f"<Property {self.id}: {self.source} - {self.name}>"


# Default ranking order
Index("idx_properties_upside", Property.upside_score.desc())
