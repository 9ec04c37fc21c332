"""
Context Collection Models

Pydantic models for task input, persisted code contexts and collection
results, plus the dataclass records shared between pipeline stages.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .stack_trace import ParsedStackTrace, StackTraceContext, StackTraceFrame


class TaskType(str, Enum):
    """Kind of tracked task driving a collection run."""

    BUG = "bug"
    FEATURE = "feature"
    IMPROVEMENT = "improvement"


class ContextType(str, Enum):
    """Kind of persisted context."""

    SNIPPET = "snippet"
    FILE_REFERENCE = "file_reference"
    DEPENDENCY = "dependency"
    PATTERN = "pattern"


class ContextSource(str, Enum):
    """Where a persisted context came from."""

    AI_COLLECTED = "ai_collected"
    MANUAL = "manual"


class TaskAnalysisInput(BaseModel):
    """Immutable request for one collection run."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(min_length=1)
    task_type: TaskType
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    current_state: Optional[str] = None
    desired_state: Optional[str] = None
    expected_behavior: Optional[str] = None
    actual_behavior: Optional[str] = None
    files_likely_involved: List[str] = Field(default_factory=list)
    # Caller-supplied signals take precedence over extracted ones
    keywords: Optional[List[str]] = None
    entities: Optional[List[str]] = None

    def _text_fields(self) -> List[Optional[str]]:
        return [
            self.title,
            self.description,
            self.current_state,
            self.desired_state,
            self.expected_behavior,
            self.actual_behavior,
        ]

    def combined_text(self) -> str:
        """Join the non-empty text fields with single spaces."""
        return " ".join(f for f in self._text_fields() if f)

    def trace_text(self) -> str:
        """Join the non-empty text fields line by line.

        Keeps an error line that opens the description at the start of its
        own line, where the stack trace patterns anchor.
        """
        return "\n".join(f for f in self._text_fields() if f)


class CodeContext(BaseModel):
    """A persisted, scored code excerpt or reference attached to a task."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    task_type: TaskType
    context_type: ContextType
    source: ContextSource = ContextSource.AI_COLLECTED
    file_path: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    content: Optional[str] = None
    description: str
    relevance_score: float = Field(ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    date_collected: datetime
    date_last_checked: Optional[datetime] = None
    is_stale: bool = False


class CodeContextCreate(BaseModel):
    """Fields for manually adding a context."""

    task_id: str = Field(min_length=1)
    task_type: TaskType
    context_type: ContextType
    file_path: str = Field(min_length=1)
    content: str = Field(min_length=1)
    description: str = Field(min_length=1)
    start_line: Optional[int] = Field(default=None, ge=1)
    end_line: Optional[int] = Field(default=None, ge=1)
    relevance_score: float = Field(default=0.8, ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)


class CodeContextUpdate(BaseModel):
    """Patchable context fields (all optional)."""

    content: Optional[str] = None
    description: Optional[str] = None
    relevance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    keywords: Optional[List[str]] = None
    is_stale: Optional[bool] = None

    def has_changes(self) -> bool:
        return bool(self.model_dump(exclude_none=True))


class CollectionSummary(BaseModel):
    """Aggregate numbers describing one collection run."""

    total_contexts: int = 0
    high_relevance_contexts: int = 0
    medium_relevance_contexts: int = 0
    low_relevance_contexts: int = 0
    average_relevance_score: float = 0.0
    processing_time_ms: int = 0
    files_analyzed: int = 0
    patterns_found: int = 0
    dependencies_analyzed: int = 0
    stack_traces_found: int = 0
    estimated_tokens: int = 0


class ContextCollectionResult(BaseModel):
    """Response of a collection run."""

    contexts: List[CodeContext] = Field(default_factory=list)
    summary: CollectionSummary = Field(default_factory=CollectionSummary)
    recommendations: List[str] = Field(default_factory=list)
    potential_issues: List[str] = Field(default_factory=list)
    stack_traces: Optional[List[ParsedStackTrace]] = None


class FreshnessReport(BaseModel):
    """Persisted contexts for a task split by age."""

    task_id: str
    threshold_hours: float
    fresh: List[CodeContext] = Field(default_factory=list)
    stale: List[CodeContext] = Field(default_factory=list)


__all__ = [
    "CodeContext",
    "CodeContextCreate",
    "CodeContextUpdate",
    "CollectionSummary",
    "ContextCollectionResult",
    "ContextSource",
    "ContextType",
    "FreshnessReport",
    "ParsedStackTrace",
    "StackTraceContext",
    "StackTraceFrame",
    "TaskAnalysisInput",
    "TaskType",
]
