from sqlmodel import create_engine, SQLModel
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from dualstore.core.config import settings

logger = logging.getLogger(__name__)

def create_store_engine(database_url: str | None = None) -> Engine:
    """
    Build the Store A engine.

    PostgreSQL gets a small pool with pre-ping (serverless poolers drop idle
    connections); SQLite is used for local development and tests.
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )

@event.listens_for(Engine, "connect")
def set_statement_timeout(dbapi_connection, connection_record):
    """Bound query time on PostgreSQL so adapter calls cannot hang."""
    if dbapi_connection.__class__.__module__.startswith("sqlite3"):
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set statement timeout: {e}")
    finally:
        cursor.close()

engine = create_store_engine()

def create_db_and_tables(bind: Engine | None = None):
    SQLModel.metadata.create_all(bind or engine)
