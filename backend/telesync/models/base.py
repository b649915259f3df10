import uuid
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Naive UTC timestamp; SQLite DateTime columns do not keep tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_db_engine(database_url: str) -> Engine:
    """Build the engine backing the local store.

    In-memory SQLite needs a single shared connection or every session would
    see its own empty database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create the four local tables if missing."""
    # Import models so they are registered with Base.metadata
    from . import symptom, cache, sync_queue  # noqa: F401

    Base.metadata.create_all(bind=engine)
