"""Database engine and session management for the ledger store."""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.config.settings import settings


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for a ledger database URL.

    SQLite connections are shared through a StaticPool so an in-memory
    database survives across sessions and threads.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


engine = build_engine(settings.database_url, echo=settings.database_echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session on the configured ledger database."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create all ledger tables that do not exist yet."""
    from src.models import Base

    Base.metadata.create_all(bind=bind or engine)


__all__ = [
    "build_engine",
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
]
