"""
Database connection via SQLAlchemy.

Defaults to a SQLite file under ./data/ (see Settings.database_url). The
directory is created on first use; no server is required for SQLite.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from sdr_pipeline.config.settings import get_settings

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, preparing the SQLite file location when needed."""
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        # Required for SQLite with FastAPI threads and background runs
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine = create_db_engine(get_settings().database_url)
SessionLocal = create_session_factory(engine)


def get_db():
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create all tables if they don't exist."""
    from sdr_pipeline import db_models  # noqa: F401 - registers models with Base
    Base.metadata.create_all(bind=bind or engine)
