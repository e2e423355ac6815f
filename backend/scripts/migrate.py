#!/usr/bin/env python3
"""
Create database tables and indexes before serving traffic.

Usage:
    python scripts/migrate.py                       # Uses DATABASE_URL
    python scripts/migrate.py --database-url sqlite:///./retail.db
    python scripts/migrate.py --seed                # Also load sample properties
"""

import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.database import Database
from app.services.normalizer import RecordNormalizer
from app.services.seed import seed_sample_properties


def main():
    parser = argparse.ArgumentParser(description="Create the retail upside schema")
    parser.add_argument("--database-url", type=str, default=settings.DATABASE_URL,
                        help="Database URL (defaults to DATABASE_URL)")
    parser.add_argument("--seed", action="store_true", help="Insert sample properties")

    args = parser.parse_args()

    database = Database(args.database_url)
    try:
        if not database.check_connection():
            print(f"Error: cannot connect to {args.database_url}")
            sys.exit(1)

        database.migrate()
        print("Schema is up to date")

        if args.seed:
            normalizer = RecordNormalizer(google_api_key=settings.google_api_key)
            with database.session() as db:
                count = seed_sample_properties(db, normalizer, settings.MARKET_VACANCY_RATE)
            print(f"Seeded {count} sample properties")
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
