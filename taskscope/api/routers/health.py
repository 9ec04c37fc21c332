"""
Health Check Endpoints

Service status for the collection engine and a database check that also
reports whether the code_contexts schema has been initialized.
"""

import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from taskscope import __version__
from taskscope.api.deps import get_db, get_engine
from taskscope.context_collection.services import ContextCollectionEngine


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Engine status; never touches the database."""
    status: str
    timestamp: datetime
    version: str
    context_root: str
    signal_extractor: str
    cached_tasks: int


class DatabaseHealthResponse(BaseModel):
    connected: bool
    schema_ready: Optional[bool] = None
    latency_ms: Optional[float] = None
    error: Optional[str] = None


@router.get("/health", response_model=HealthResponse)
def health_check(engine: ContextCollectionEngine = Depends(get_engine)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        context_root=str(engine.root),
        signal_extractor=engine.extractor.name,
        cached_tasks=len(engine.context_cache),
    )


@router.get("/health/db", response_model=DatabaseHealthResponse)
def database_health_check(db=Depends(get_db)):
    """
    Round-trip to PostgreSQL.

    schema_ready is False until `taskscope init-db` has created the
    code_contexts table.
    """
    try:
        start = time.perf_counter()
        with db.cursor() as cur:
            cur.execute("SELECT to_regclass('code_contexts') IS NOT NULL AS schema_ready")
            row = cur.fetchone()
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
    except Exception as e:
        return DatabaseHealthResponse(connected=False, error=str(e))

    return DatabaseHealthResponse(
        connected=True,
        schema_ready=bool(row["schema_ready"]) if row else False,
        latency_ms=latency_ms,
    )
