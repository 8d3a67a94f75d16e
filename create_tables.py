"""
Database table creation script for Identity Reconciliation API
This script creates all database tables and tests the database connection.
Run this script after setting up your database to initialize the schema.
"""

import asyncio
import logging
import sys

from sqlalchemy import func, select

from database import db_manager
from models import Contact

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables() -> bool:
    """
    Create all database tables defined in the models
    This function ensures all tables exist and are up to date
    """
    try:
        logger.info("Starting database table creation...")

        # Test database connection first
        if not await db_manager.test_connection():
            logger.error("Database connection failed - cannot create tables")
            return False

        await db_manager.create_tables()

        # Test that we can query the contacts table (even if empty)
        async with db_manager.get_session() as session:
            result = await session.execute(select(func.count()).select_from(Contact))
            logger.info(f"Contacts table accessible - current count: {result.scalar()}")

        return True

    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        return False
    finally:
        await db_manager.dispose()


def main() -> int:
    """Main function to run the table creation"""
    logger.info("Identity Reconciliation API - Database Setup")
    logger.info("=" * 50)

    success = asyncio.run(create_tables())

    if success:
        logger.info("Database setup completed successfully!")
        logger.info("You can now start the API server with: python main.py")
    else:
        logger.error("Database setup failed!")
        logger.error("Please check your database configuration and try again")

    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
