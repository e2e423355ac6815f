"""
Collector protocol shared by the listing scrapers and the places API.

A collector yields best-effort source records for one origin. It may
return an empty list (nothing found, markup changed) or raise; the
ingestion orchestrator isolates each collector so one failure never
stops the others.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.services.normalizer import SourceRecord


class CollectorError(Exception):
    """A collector could not run (misconfiguration, upstream error)."""


class CollectorTimeout(CollectorError):
    """A collector did not finish within its time budget."""


@dataclass
class CollectionContext:
    """Where to search. Filled in by the orchestrator before collectors run."""
    location: Optional[str] = None  # "Denver, CO"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_miles: float = 25.0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class Collector(ABC):
    """Base class for record collectors."""

    name: str = ""
    # Which part of the context the collector cannot run without
    requires_location: bool = False
    requires_coordinates: bool = False

    @abstractmethod
    async def collect(self, context: CollectionContext) -> list[SourceRecord]:
        """Return source records for the given search area."""

    def can_run(self, context: CollectionContext) -> bool:
        if self.requires_location and not context.location:
            return False
        if self.requires_coordinates and not context.has_coordinates:
            return False
        return True
