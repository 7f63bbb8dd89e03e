from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event

from agencyops.core.config import settings
from agencyops.core.logging_config import get_logger

logger = get_logger(__name__)

DATABASE_URL = settings.DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, echo=False, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        pool_size=5,
        max_overflow=10,  # Allow burst connections
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Managed Postgres drops idle connections
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )


@event.listens_for(engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Cap query time on Postgres connections so a stuck scan can't pin a job."""
    if engine.dialect.name != "postgresql":
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning("Could not set statement timeout", error=str(e))
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Import models so they are registered on SQLModel.metadata
    import agencyops.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
