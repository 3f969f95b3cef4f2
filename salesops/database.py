"""
Database engine initialisation and shared query helpers.
"""

import asyncio
import sys
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from salesops.config import get_env
from salesops.errors import TransportFailure


def init_engine():
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


def fetch_rows(engine, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Run a read-only statement and return its rows as plain dicts."""
    try:
        with engine.connect() as conn:
            rows = conn.execute(text(sql), params or {}).mappings().all()
    except SQLAlchemyError as e:
        raise TransportFailure(f"query failed: {e}") from e
    return [dict(r) for r in rows]


async def fetch_rows_async(engine, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """fetch_rows on a worker thread, so the event loop stays free while the DB answers."""
    return await asyncio.to_thread(fetch_rows, engine, sql, params)
