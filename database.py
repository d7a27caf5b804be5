# FILE: database.py
# -*- coding: utf-8 -*-

from typing import Optional

import sqlalchemy
from databases import Database
from fastapi import HTTPException
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base

from config import DATABASE_URL, get_logger

logger = get_logger("voyya.db", "Database")

Base = declarative_base()

# No DATABASE_URL means local tooling without a DB: reads come back empty, writes get 503
database: Optional[Database] = Database(DATABASE_URL) if DATABASE_URL else None


def sync_url(url: str) -> str:
    """Async driver URL -> default sync driver URL (used only for create_all)."""
    u = make_url(url)
    return u.set(drivername=u.get_backend_name()).render_as_string(hide_password=False)


def sync_engine():
    return sqlalchemy.create_engine(sync_url(DATABASE_URL))


def create_tables():
    engine = sync_engine()
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()


def dialect_name() -> str:
    return make_url(DATABASE_URL).get_backend_name() if DATABASE_URL else ""


def get_database(action: str) -> Optional[Database]:
    """Database for a read; logs and returns None when it is not configured."""
    if database is None:
        logger.warning(f"Cannot {action}: database not available")
    return database


def require_database() -> Database:
    """Database for a write; 503 when it is not configured."""
    if database is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return database


def row_to_dict(row, table) -> Optional[dict]:
    """Record -> plain dict over the table's columns."""
    if row is None:
        return None
    return {c.name: row[c.name] for c in table.__table__.columns}
