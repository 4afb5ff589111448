"""Database sessions for command-line tools.

Tools such as the credit ledger rebuild may target a database other than
the configured application one; they get a private engine that is disposed
when the session is done.
"""

from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from src.services import build_engine, init_db


def create_session(database_url: str, create_tables: bool = True) -> Generator[Session, None, None]:
    """
    Yield one session on database_url, then close it and dispose the engine.

    Args:
        database_url: SQLAlchemy database URL (e.g., "sqlite:///./condo_ledger.db")
        create_tables: Create missing ledger tables before yielding

    Example:
        ```python
        for session in create_session("sqlite:///./condo_ledger.db"):
            units = session.query(UnitAccount).all()
        ```
    """
    engine = build_engine(database_url)
    if create_tables:
        init_db(bind=engine)
    session = sessionmaker(bind=engine)()

    try:
        yield session
    finally:
        session.close()
        engine.dispose()
