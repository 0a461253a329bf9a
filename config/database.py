"""
NYC Spatial Joins - Database Connection Management
SQLAlchemy + PostGIS configuration
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from config.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_connect_args(database_url: str) -> dict:
    # Postgres-specific connection option (timezone)
    if database_url.startswith("postgresql"):
        return {"options": "-c timezone=utc"}
    return {}


# SQLAlchemy engine
# NullPool in production so short-lived report runs never hold idle connections
engine = create_engine(
    settings.DATABASE_URL,
    poolclass=NullPool if settings.ENVIRONMENT == "production" else None,
    echo=settings.DEBUG,
    connect_args=_engine_connect_args(settings.DATABASE_URL),
)


# Confirm PostGIS on connection
@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Ensure PostGIS is available on connection"""
    with dbapi_conn.cursor() as cursor:
        cursor.execute("SELECT PostGIS_version();")
        version = cursor.fetchone()
        logger.debug(f"PostGIS version: {version[0] if version else 'Unknown'}")


# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db() as db:
            run_ratio_report(db, ...)
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        db.close()


def get_db_session() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI endpoints.

    Usage:
        @router.get("/endpoint")
        def endpoint(db: Session = Depends(get_db_session)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def test_connection() -> bool:
    """
    Test database connectivity and PostGIS availability.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with get_db() as db:
            result = db.execute(text("SELECT 1"))
            assert result.scalar() == 1

            result = db.execute(text("SELECT PostGIS_version()"))
            version = result.scalar()
            logger.info(f"Database connection successful. PostGIS version: {version}")

            result = db.execute(
                text(
                    "SELECT COUNT(*) FROM information_schema.tables "
                    "WHERE table_name = :table_name"
                ),
                {"table_name": settings.BLOCKS_TABLE},
            )
            if result.scalar() == 0:
                logger.warning(f"Table {settings.BLOCKS_TABLE} not found; load the NYC data first")

            return True

    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False


if __name__ == "__main__":
    # Test connection when run directly
    logging.basicConfig(level=logging.INFO)
    if test_connection():
        print("Database connection successful")
    else:
        print("Database connection failed")
