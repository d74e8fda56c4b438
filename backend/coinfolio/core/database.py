"""
Database connection and session management.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from coinfolio.core.config import (
    DATABASE_DSN,
    DB_MAX_OVERFLOW,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
)

logger = logging.getLogger(__name__)

if not DATABASE_DSN:
    raise ValueError("DATABASE_DSN not configured. Create coinfolio/config_local.py from docs/BACKEND_config_local.example.py")


def _engine_options(dsn: str) -> dict:
    """Pool and driver options for the configured backend."""
    if dsn.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "echo": False,
        }
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_size": DB_POOL_SIZE,  # Number of connections to maintain
        "max_overflow": DB_MAX_OVERFLOW,  # Maximum overflow connections
        "pool_timeout": DB_POOL_TIMEOUT,  # Wait for a free connection instead of opening more
        "echo": False,  # Set to True for SQL debugging
        "connect_args": {
            "connect_timeout": 10,
            "read_timeout": 30,
            "write_timeout": 30,
        } if "pymysql" in dsn else {},
    }


engine = create_engine(DATABASE_DSN, **_engine_options(DATABASE_DSN))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables that do not exist yet."""
    # Import models so they are registered on Base.metadata
    import coinfolio.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables verified")


def get_db():
    """Dependency for FastAPI to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        try:
            db.close()
        except Exception as e:
            # Connection may already be gone; nothing else to release
            logger.warning(f"Error closing database session (connection may be lost): {str(e)}")
