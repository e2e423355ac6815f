#!/usr/bin/env python3
"""
Run one ingestion job from the command line.

Usage:
    python scripts/run_ingestion.py --location "Denver, CO"
    python scripts/run_ingestion.py --source places --lat 39.7392 --lng -104.9903 --radius 10
"""

import sys
import asyncio
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.database import Database
from app.main import build_collectors
from app.services.geocoding import GeocodingService
from app.services.ingestion import SOURCES, IngestionOrchestrator
from app.services.normalizer import RecordNormalizer


def main():
    parser = argparse.ArgumentParser(description="Ingest retail properties for a location")
    parser.add_argument("--source", choices=SOURCES, default="all", help="Collector to run")
    parser.add_argument("--location", type=str, help='Place name, e.g. "Denver, CO"')
    parser.add_argument("--lat", type=float, help="Search latitude")
    parser.add_argument("--lng", type=float, help="Search longitude")
    parser.add_argument("--radius", type=float, default=settings.DEFAULT_RADIUS_MILES,
                        help="Search radius in miles")

    args = parser.parse_args()

    if not args.location and (args.lat is None or args.lng is None):
        parser.error("provide --location or both --lat and --lng")

    database = Database(settings.DATABASE_URL)
    database.migrate()

    normalizer = RecordNormalizer(
        google_api_key=settings.google_api_key,
        synthesize_missing_vacancy=settings.SYNTHESIZE_MISSING_VACANCY,
    )
    orchestrator = IngestionOrchestrator(
        database,
        build_collectors(settings),
        normalizer,
        geocoder=GeocodingService(settings),
        market_vacancy_rate=settings.MARKET_VACANCY_RATE,
        collector_timeout=settings.COLLECTOR_TIMEOUT_SECONDS,
        default_radius_miles=settings.DEFAULT_RADIUS_MILES,
    )

    try:
        job = asyncio.run(orchestrator.ingest(
            args.source,
            location=args.location,
            latitude=args.lat,
            longitude=args.lng,
            radius_miles=args.radius,
        ))
    finally:
        database.dispose()

    print(f"\n=== Job {job.job_id} ===")
    print(f"  Status: {job.status}")
    print(f"  Found:  {job.properties_found}")
    print(f"  Added:  {job.properties_added}")
    if job.error_message:
        print(f"  Error:  {job.error_message}")
    for name, counts in (job.results or {}).get("collectors", {}).items():
        print(f"  {name}: {counts['found']} found, {counts['added']} added" +
              (f" ({counts['error']})" if counts.get("error") else ""))
    for name, reason in (job.results or {}).get("skipped", {}).items():
        print(f"  {name}: skipped ({reason})")

    sys.exit(0 if job.status == "completed" else 1)


if __name__ == "__main__":
    main()
