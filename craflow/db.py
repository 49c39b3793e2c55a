import os

from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import IntegrityError
from sqlalchemy import create_engine
from .config import settings


engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    pool_recycle=3600,  # Recycle connections after 1 hour
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)

# One Session per operation call; services never share a session across threads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create all tables on the given engine (defaults to the configured one)."""
    from .models import models  # noqa: F401  registers mappers on Base.metadata

    target = bind or engine
    if settings.database_url.startswith("sqlite:///./") and bind is None:
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=target)


def integrity_error_matches(exc: IntegrityError, *markers: str) -> bool:
    """
    Tell whether an IntegrityError was raised by one of the named constraints.

    PostgreSQL reports the constraint name, SQLite reports the offending
    table.column list, so callers pass one marker for each.
    """
    text = str(getattr(exc, "orig", exc))
    return any(marker in text for marker in markers)
