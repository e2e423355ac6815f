from app.services.geocoding import GeocodingService
from app.services.scoring import calculate_upside_score
from app.services.normalizer import RecordNormalizer

__all__ = [
    "GeocodingService",
    "calculate_upside_score",
    "RecordNormalizer",
]
