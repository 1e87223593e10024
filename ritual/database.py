"""
Database engine and session factory.

SQLite URLs get ``check_same_thread=False`` because background generation
runs on worker threads with their own sessions.
"""
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from ritual.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str):
    """Create an engine for ``database_url`` with the connection options we rely on."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.read_timeout_seconds,
        }
    eng = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)

    if database_url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


def build_session_factory(eng):
    return sessionmaker(autocommit=False, autoflush=False, bind=eng, expire_on_commit=False)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


def init_db(eng=None):
    """Create all tables"""
    # Import models so they register on Base.metadata
    import ritual.models  # noqa: F401

    Base.metadata.create_all(bind=eng or engine)
    logger.debug("Database tables created")
