#!/usr/bin/env python3
"""
Initialize the CRM records database.

Creates all tables. On PostgreSQL it also enables pg_trgm and adds the GIN
trigram indexes used by the real-time duplicate prefilter.

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

from crm.database import engine, Base, get_session

TRIGRAM_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_contacts_name_trgm ON contacts "
    "USING gin ((first_name || ' ' || last_name) gin_trgm_ops)",
    "CREATE INDEX IF NOT EXISTS idx_contacts_email_trgm ON contacts USING gin (email gin_trgm_ops)",
    "CREATE INDEX IF NOT EXISTS idx_companies_name_trgm ON companies USING gin (name gin_trgm_ops)",
    "CREATE INDEX IF NOT EXISTS idx_companies_website_trgm ON companies USING gin (website gin_trgm_ops)",
]


def verify_extensions(session) -> dict:
    """Check which PostgreSQL extensions are installed."""
    result = session.execute(
        text("SELECT extname, extversion FROM pg_extension ORDER BY extname;")
    ).fetchall()

    extensions = {row[0]: row[1] for row in result}
    logger.info(f"Installed extensions: {list(extensions.keys())}")
    return extensions


def enable_trigram_search(session) -> None:
    """Enable pg_trgm and create the trigram indexes."""
    session.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm;"))
    for statement in TRIGRAM_INDEXES:
        session.execute(text(statement))
    logger.info(f"pg_trgm enabled, {len(TRIGRAM_INDEXES)} trigram indexes ensured")


def main():
    parser = argparse.ArgumentParser(description="Initialize the CRM database")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables before creating (USE WITH CAUTION!)",
    )
    parser.add_argument(
        "--skip-trigram",
        action="store_true",
        help="Skip pg_trgm extension and indexes",
    )
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("CRM - Database Initialization")
    logger.info("=" * 60)

    is_postgres = engine.dialect.name == "postgresql"

    try:
        if is_postgres:
            logger.info("Checking PostgreSQL extensions...")
            with get_session() as session:
                verify_extensions(session)

        # Drop tables if requested
        if args.drop:
            logger.warning("Dropping all existing tables...")
            confirm = input("Are you sure you want to drop all tables? (yes/no): ")
            if confirm.lower() == "yes":
                Base.metadata.drop_all(engine)
                logger.info("Tables dropped.")
            else:
                logger.info("Drop cancelled.")
                sys.exit(0)

        logger.info("Creating database tables...")
        Base.metadata.create_all(engine)
        logger.info(f"Tables in database: {inspect(engine).get_table_names()}")

        if is_postgres and not args.skip_trigram:
            with get_session() as session:
                enable_trigram_search(session)

        logger.info("=" * 60)
        logger.info("Database initialization complete!")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Error during initialization: {e}")
        raise


if __name__ == "__main__":
    main()
