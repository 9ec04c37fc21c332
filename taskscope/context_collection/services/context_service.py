"""
Context Tool Service

The operations host clients call: collect contexts for a task, read them
back, check their freshness, and manage manual contexts. Also renders
results as plain text for clients that display tool output verbatim.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..models import (
    CodeContext,
    CodeContextCreate,
    CodeContextUpdate,
    ContextCollectionResult,
    ContextSource,
    FreshnessReport,
    TaskAnalysisInput,
    TaskType,
)
from .collection_engine import ContextCollectionEngine
from .context_store import ContextStore

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_HOURS = 24

ModelT = TypeVar("ModelT", bound=BaseModel)


class ContextNotFoundError(Exception):
    """Raised when a context id does not exist."""

    def __init__(self, context_id: str):
        self.context_id = context_id
        super().__init__(f"Context {context_id} not found")


def _validate(model: Type[ModelT], data: Union[ModelT, Dict[str, Any]]) -> ModelT:
    """Validate request data, reporting missing required fields as ValueError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] == "missing"]
        if missing:
            raise ValueError(f"Missing required field(s): {', '.join(missing)}") from e
        raise


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextToolService:
    """
    Collection and context management for one database connection.

    Usage:
        service = ContextToolService(engine, ContextStore(db))
        result = await service.collect({"task_id": "BUG-1", ...})
        report = service.check_freshness("BUG-1")
    """

    def __init__(
        self,
        engine: ContextCollectionEngine,
        store: ContextStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine = engine
        self.store = store
        self._clock = clock or _utcnow

    async def collect(self, task: Union[TaskAnalysisInput, Dict[str, Any]]) -> ContextCollectionResult:
        """Run the pipeline for a task and persist the resulting contexts."""
        task = _validate(TaskAnalysisInput, task)
        result = await self.engine.collect_contexts(task)
        self.store.save_contexts(result.contexts)
        return result

    def get(self, task_id: str, task_type: Optional[TaskType] = None) -> List[CodeContext]:
        if not task_id:
            raise ValueError("task_id is required")
        return self.store.get_contexts(task_id, task_type)

    def check_freshness(self, task_id: str, threshold_hours: float = DEFAULT_FRESHNESS_HOURS) -> FreshnessReport:
        """
        Split a task's contexts by time since they were last checked.

        Contexts never checked are aged from date_collected. Stale ones are
        flagged in the store when staleness tracking is enabled.
        """
        if not task_id:
            raise ValueError("task_id is required")

        now = self._clock()
        threshold = timedelta(hours=threshold_hours)
        report = FreshnessReport(task_id=task_id, threshold_hours=threshold_hours)

        for context in self.store.get_contexts(task_id):
            checked = context.date_last_checked or context.date_collected
            if checked.tzinfo is None:
                checked = checked.replace(tzinfo=timezone.utc)
            if now - checked > threshold:
                report.stale.append(context.model_copy(update={"is_stale": True}))
            else:
                report.fresh.append(context)

        if report.stale and self.engine.config.enable_staleness_tracking:
            self.store.mark_stale([c.id for c in report.stale])

        logger.info(
            f"Freshness check for {task_id}: {len(report.fresh)} fresh, {len(report.stale)} stale",
            extra={"task_id": task_id, "fresh": len(report.fresh), "stale": len(report.stale)},
        )
        return report

    def add(self, data: Union[CodeContextCreate, Dict[str, Any]]) -> CodeContext:
        """Persist a manually supplied context."""
        data = _validate(CodeContextCreate, data)
        now = self._clock()
        context = CodeContext(
            id=f"{data.task_id}_manual_{int(now.timestamp() * 1000)}",
            task_id=data.task_id,
            task_type=data.task_type,
            context_type=data.context_type,
            source=ContextSource.MANUAL,
            file_path=data.file_path,
            start_line=data.start_line,
            end_line=data.end_line,
            content=data.content,
            description=data.description,
            relevance_score=data.relevance_score,
            keywords=data.keywords,
            date_collected=now,
            is_stale=False,
        )
        return self.store.save_context(context)

    def update(self, context_id: str, changes: Union[CodeContextUpdate, Dict[str, Any]]) -> CodeContext:
        """
        Patch a context and stamp date_last_checked.

        Raises:
            ValueError: If no updatable field is given
            ContextNotFoundError: If the id does not exist
        """
        changes = _validate(CodeContextUpdate, changes)
        if not changes.has_changes():
            raise ValueError("No valid update fields provided")

        fields = changes.model_dump(exclude_none=True)
        fields["date_last_checked"] = self._clock()
        updated = self.store.update_context(context_id, fields)
        if updated is None:
            raise ContextNotFoundError(context_id)
        return updated

    def remove(self, context_id: str) -> None:
        if not self.store.delete_context(context_id):
            raise ContextNotFoundError(context_id)
        logger.info(f"Removed context {context_id}", extra={"context_id": context_id})


# ============================================================================
# TEXT FORMATTERS
# ============================================================================


def format_contexts(contexts: List[CodeContext]) -> str:
    if not contexts:
        return "No contexts found."

    lines = []
    for index, context in enumerate(contexts, start=1):
        lines.append(f"{index}. {context.description}")
        lines.append(f"   ID: {context.id}")
        lines.append(f"   Type: {context.context_type.value}")
        lines.append(f"   Source: {context.source.value}")
        lines.append(f"   File: {context.file_path}")
        if context.start_line and context.end_line:
            lines.append(f"   Lines: {context.start_line}-{context.end_line}")
        lines.append(f"   Relevance: {context.relevance_score:.2f}")
        lines.append(f"   Keywords: {', '.join(context.keywords)}")
        lines.append(f"   Collected: {context.date_collected.isoformat()}")
        if context.is_stale:
            lines.append("   Status: STALE")
        lines.append("")
    return "\n".join(lines)


def format_collection_result(result: ContextCollectionResult) -> str:
    summary = result.summary
    output = [
        "Context Collection Summary:",
        f"- Total contexts collected: {summary.total_contexts}",
        f"- High relevance contexts: {summary.high_relevance_contexts}",
        f"- Medium relevance contexts: {summary.medium_relevance_contexts}",
        f"- Low relevance contexts: {summary.low_relevance_contexts}",
        f"- Average relevance score: {summary.average_relevance_score:.2f}",
        f"- Processing time: {summary.processing_time_ms}ms",
        f"- Files analyzed: {summary.files_analyzed}",
        f"- Patterns found: {summary.patterns_found}",
        f"- Dependencies analyzed: {summary.dependencies_analyzed}",
        f"- Stack traces found: {summary.stack_traces_found}",
        f"- Estimated tokens: {summary.estimated_tokens}",
        "",
    ]

    if result.contexts:
        output.append("Collected Contexts:")
        output.append(format_contexts(result.contexts))

    if result.recommendations:
        output.append("Recommendations:")
        output.extend(f"- {r}" for r in result.recommendations)
        output.append("")

    if result.potential_issues:
        output.append("Potential Issues:")
        output.extend(f"- {i}" for i in result.potential_issues)

    return "\n".join(output).rstrip() + "\n"


def format_freshness_report(report: FreshnessReport) -> str:
    output = [
        f"Context freshness check for task {report.task_id}:",
        f"- Fresh contexts: {len(report.fresh)}",
        f"- Stale contexts: {len(report.stale)}",
        f"- Total contexts: {len(report.fresh) + len(report.stale)}",
    ]
    if report.stale:
        output.append("")
        output.append("Stale contexts:")
        for context in report.stale:
            checked = context.date_last_checked or context.date_collected
            output.append(f"  - {context.id}: {context.description} (last checked: {checked.isoformat()})")
    return "\n".join(output) + "\n"
