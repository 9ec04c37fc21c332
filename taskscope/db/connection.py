"""PostgreSQL database connection helpers."""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/taskscope"
    )


@contextmanager
def get_connection(cursor_factory=RealDictCursor) -> Generator:
    """Get a database connection context manager (dict rows by default)."""
    conn = psycopg2.connect(get_connection_string(), cursor_factory=cursor_factory)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Initialize database schema."""
    schema_path = Path(__file__).parent / "schema.sql"
    with open(schema_path) as f:
        schema_sql = f.read()

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
