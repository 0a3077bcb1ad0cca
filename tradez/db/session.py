# tradez/db/session.py
"""Database engine/session factory and initialization."""

import os
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

# Get database URL from environment, default to local SQLite
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tradez.db")
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"


def make_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    """Build an engine; for file-based SQLite the parent directory is created."""
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.replace("sqlite:///", "")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        echo=echo,
    )


engine = make_engine()


def create_db_and_tables(bind: Engine = engine):
    """Create all tables if they don't exist."""
    SQLModel.metadata.create_all(bind)


def get_session(bind: Engine = engine) -> Session:
    """Get a new database session."""
    return Session(bind)
