from agencyops.db import create_db_and_tables
from agencyops.core.logging_config import get_logger

logger = get_logger("init_db")

if __name__ == "__main__":
    logger.info("Creating tables...")
    try:
        create_db_and_tables()
        logger.info("Tables created successfully!")
    except Exception as e:
        logger.error("Error creating tables", error=str(e))
        raise SystemExit(1)
