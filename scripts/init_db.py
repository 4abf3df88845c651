#!/usr/bin/env python3
"""
Initialize the GeoResolver database.

Enables PostGIS and creates the reference, watermark and lock tables.
Works with a direct PostgreSQL installation (no Docker needed).

Usage:
    python scripts/init_db.py [--drop]

Options:
    --drop  Drop existing tables before creating (USE WITH CAUTION!)
"""

import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from georesolver.database import SessionLocal, create_all_tables, drop_all_tables, engine


def verify_postgis(session) -> bool:
    """Verify PostGIS extension is available."""
    try:
        result = session.execute(text("SELECT PostGIS_version();")).fetchone()
        logger.info(f"PostGIS version: {result[0]}")
        return True
    except SQLAlchemyError as e:
        logger.error(f"PostGIS not available: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(description="Initialize the GeoResolver database")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables before creating (USE WITH CAUTION!)",
    )
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("GeoResolver - Database Initialization")
    logger.info("=" * 60)

    try:
        if args.drop:
            logger.warning("Dropping all existing tables...")
            confirm = input("Are you sure you want to drop all tables? (yes/no): ")
            if confirm.lower() == "yes":
                drop_all_tables()
                logger.info("Tables dropped.")
            else:
                logger.info("Drop cancelled.")
                sys.exit(0)

        logger.info("Creating database tables...")
        create_all_tables()

        with SessionLocal() as session:
            if not verify_postgis(session):
                logger.error("PostGIS is required but not installed!")
                logger.error("Install it with: sudo apt install postgresql-16-postgis-3")
                sys.exit(1)

        tables = inspect(engine).get_table_names()
        logger.info(f"Tables in database: {tables}")

        logger.info("=" * 60)
        logger.info("Database initialization complete!")
        logger.info("=" * 60)

    except SQLAlchemyError as e:
        logger.error(f"Error during initialization: {e}")
        raise


if __name__ == "__main__":
    main()
