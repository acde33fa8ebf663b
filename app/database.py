"""
Database connection, session management, and table creation.
Uses SQLAlchemy with PostgreSQL in production and SQLite locally. All models
are auto-imported here so create_tables() creates every table in one call.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.config import settings

Base = declarative_base()


def build_engine(url: str, **overrides):
    """Create an engine with pool settings suited to the backend behind `url`."""
    options = {
        "pool_pre_ping": True,          # Auto-reconnect if DB connection drops
        "echo": False,                  # Set True to log all SQL queries (debug only)
    }
    if url.startswith("sqlite"):
        # Storage calls run on worker threads, one connection per thread
        options["connect_args"] = {"check_same_thread": False, "timeout": 15}
    else:
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    options.update(overrides)
    return create_engine(url, **options)


def build_session_factory(bind):
    # Rows handed out by the stores are read after the session closes
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_session_factory(engine)


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Creates all DB tables on startup. Safe to call multiple times.
    Import all models here so SQLAlchemy knows about them.
    """
    from app.models.vehicle import Vehicle              # noqa
    from app.models.queue_entry import QueueEntry       # noqa
    from app.models.trip import Trip                    # noqa
    from app.models.audit_log import AuditLogEntry      # noqa

    Base.metadata.create_all(bind=bind or engine)
