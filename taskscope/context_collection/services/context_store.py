"""
Context Store

PostgreSQL persistence for collected and manually added code contexts.
Keywords are stored as JSON text, is_stale as 0/1 and timestamps as
ISO-8601 text (see db/schema.sql).
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models import CodeContext, TaskType

logger = logging.getLogger(__name__)

CONTEXT_COLUMNS = (
    "id", "task_id", "task_type", "context_type", "source", "file_path",
    "start_line", "end_line", "content", "description", "relevance_score",
    "keywords", "date_collected", "date_last_checked", "is_stale",
)

# Fields a caller may patch
UPDATABLE_FIELDS = ("content", "description", "relevance_score", "keywords", "is_stale", "date_last_checked")

_SELECT = f"SELECT {', '.join(CONTEXT_COLUMNS)} FROM code_contexts"


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _column_value(field_name: str, value: Any) -> Any:
    if field_name == "keywords":
        return json.dumps(list(value or []))
    if field_name == "is_stale":
        return 1 if value else 0
    if isinstance(value, datetime):
        return _to_text(value)
    return getattr(value, "value", value)


class ContextStore:
    """
    Code context persistence.

    Responsibilities:
    - Upsert contexts produced by a collection run
    - Query contexts per task, ordered by relevance
    - Patch, flag and delete single contexts

    Expects a psycopg2 connection created with RealDictCursor.
    """

    def __init__(self, db_connection):
        self.db = db_connection

    def save_contexts(self, contexts: Iterable[CodeContext]) -> int:
        """Insert or replace contexts by id. Returns the number written."""
        placeholders = ", ".join(["%s"] * len(CONTEXT_COLUMNS))
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in CONTEXT_COLUMNS if c != "id")
        sql = (
            f"INSERT INTO code_contexts ({', '.join(CONTEXT_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT (id) DO UPDATE SET {updates}"
        )

        count = 0
        with self.db.cursor() as cur:
            for context in contexts:
                data = context.model_dump()
                cur.execute(sql, tuple(_column_value(c, data[c]) for c in CONTEXT_COLUMNS))
                count += 1

        logger.info(f"Saved {count} context(s)", extra={"count": count})
        return count

    def save_context(self, context: CodeContext) -> CodeContext:
        self.save_contexts([context])
        return context

    def get_contexts(self, task_id: str, task_type: Optional[TaskType] = None) -> List[CodeContext]:
        """Contexts for a task, highest relevance first."""
        with self.db.cursor() as cur:
            if task_type is not None:
                cur.execute(
                    f"{_SELECT} WHERE task_id = %s AND task_type = %s ORDER BY relevance_score DESC, id",
                    (task_id, getattr(task_type, "value", task_type)),
                )
            else:
                cur.execute(
                    f"{_SELECT} WHERE task_id = %s ORDER BY relevance_score DESC, id",
                    (task_id,),
                )
            rows = cur.fetchall()
        return [self._row_to_context(row) for row in rows]

    def get_context(self, context_id: str) -> Optional[CodeContext]:
        with self.db.cursor() as cur:
            cur.execute(f"{_SELECT} WHERE id = %s", (context_id,))
            row = cur.fetchone()
        return self._row_to_context(row) if row else None

    def update_context(self, context_id: str, changes: Dict[str, Any]) -> Optional[CodeContext]:
        """
        Patch whitelisted fields of one context.

        Returns:
            The updated context, or None if no row has that id
        """
        fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if not fields:
            return self.get_context(context_id)

        assignments = ", ".join(f"{name} = %s" for name in fields)
        values = [_column_value(name, value) for name, value in fields.items()]

        with self.db.cursor() as cur:
            cur.execute(
                f"UPDATE code_contexts SET {assignments} WHERE id = %s RETURNING {', '.join(CONTEXT_COLUMNS)}",
                (*values, context_id),
            )
            row = cur.fetchone()
        return self._row_to_context(row) if row else None

    def mark_stale(self, context_ids: List[str]) -> int:
        if not context_ids:
            return 0
        with self.db.cursor() as cur:
            cur.execute(
                "UPDATE code_contexts SET is_stale = 1 WHERE id = ANY(%s)",
                (list(context_ids),),
            )
            updated = cur.rowcount
        logger.info(f"Flagged {updated} context(s) as stale", extra={"count": updated})
        return updated

    def delete_context(self, context_id: str) -> bool:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM code_contexts WHERE id = %s", (context_id,))
            return cur.rowcount > 0

    @staticmethod
    def _row_to_context(row: Dict[str, Any]) -> CodeContext:
        keywords = row.get("keywords") or "[]"
        if isinstance(keywords, str):
            keywords = json.loads(keywords)
        return CodeContext(
            id=row["id"],
            task_id=row["task_id"],
            task_type=row["task_type"],
            context_type=row["context_type"],
            source=row["source"],
            file_path=row["file_path"],
            start_line=row.get("start_line"),
            end_line=row.get("end_line"),
            content=row.get("content"),
            description=row["description"],
            relevance_score=float(row["relevance_score"]),
            keywords=keywords,
            date_collected=_to_datetime(row["date_collected"]),
            date_last_checked=_to_datetime(row.get("date_last_checked")),
            is_stale=bool(row.get("is_stale")),
        )
