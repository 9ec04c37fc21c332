"""
TaskScope API - Main Application

FastAPI application exposing context collection and context management
for issue-tracker tasks.

Run with:
    uvicorn taskscope.api.main:app --reload --port 8000

API Documentation available at:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
import logging.handlers
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from taskscope.logging_utils import SafeStreamHandler, resolve_log_level

# =============================================================================
# File-based logging (survives stdout/pipe issues)
# =============================================================================
_LOG_FILE = os.environ.get("TASKSCOPE_LOG_FILE", "/tmp/taskscope-api.log")
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOG_LEVEL = resolve_log_level()

_root_logger = logging.getLogger()
_root_logger.setLevel(_LOG_LEVEL)

_file_handler = logging.handlers.RotatingFileHandler(
    _LOG_FILE,
    maxBytes=10 * 1024 * 1024,  # 10MB
    backupCount=3,
)
_file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
_file_handler.setLevel(_LOG_LEVEL)
_root_logger.addHandler(_file_handler)

_stream_handler = SafeStreamHandler()
_stream_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
_stream_handler.setLevel(_LOG_LEVEL)
_root_logger.addHandler(_stream_handler)

# Suppress noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

# =============================================================================

load_dotenv(Path(__file__).parent.parent.parent / ".env")

from taskscope.api.routers import contexts, health

logger = logging.getLogger(__name__)


app = FastAPI(
    title="TaskScope API",
    description="""
    Code context collection for issue-tracker tasks.

    - **Collect**: rank the code a bug, feature or improvement is about
    - **Manage**: read, add, patch and delete persisted contexts
    - **Freshness**: flag contexts that have not been checked recently
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures as 400."""
    logger.info(f"Rejected request to {request.url.path}: {len(exc.errors())} validation error(s)")
    return JSONResponse(
        status_code=400,
        content={"detail": [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]},
    )


app.include_router(health.router)
app.include_router(contexts.router)


@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "name": "TaskScope API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
