"""
FastAPI Dependency Injection

Provides database connections, the shared collection engine and the
context tool service for API endpoints.
"""

import os
from functools import lru_cache
from typing import Generator

import psycopg2
from fastapi import Depends
from psycopg2.extras import RealDictCursor

from taskscope.context_collection.config import load_config_from_env
from taskscope.context_collection.services import (
    ContextCollectionEngine,
    ContextStore,
    ContextToolService,
    build_signal_extractor,
)
from taskscope.db.connection import get_connection_string


def get_db() -> Generator:
    """
    FastAPI dependency for database connections.

    Yields a database connection with RealDictCursor for dict-style row access.
    Automatically commits on success, rolls back on error, and closes connection.
    """
    conn = psycopg2.connect(
        get_connection_string(),
        cursor_factory=RealDictCursor
    )
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@lru_cache(maxsize=1)
def get_engine() -> ContextCollectionEngine:
    """
    Process-wide collection engine.

    Shared across requests so its result and signal caches survive between
    calls. Root from CONTEXT_ROOT, extractor from TASKSCOPE_SIGNAL_EXTRACTOR
    (default "scored").
    """
    extractor = build_signal_extractor(os.environ.get("TASKSCOPE_SIGNAL_EXTRACTOR", "scored"))
    return ContextCollectionEngine(config=load_config_from_env(), extractor=extractor)


def get_context_service(
    db=Depends(get_db),
    engine: ContextCollectionEngine = Depends(get_engine),
) -> ContextToolService:
    """Dependency for ContextToolService."""
    return ContextToolService(engine, ContextStore(db))
