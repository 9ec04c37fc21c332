"""
Context Collection

Pipeline that turns a task description into ranked, token-budgeted code
contexts, plus the persistence and tool surface around it.
"""

from .config import ContextCollectionConfig, ScoringWeights, load_config_from_env
from .models import (
    CodeContext,
    CodeContextCreate,
    CodeContextUpdate,
    CollectionSummary,
    ContextCollectionResult,
    FreshnessReport,
    TaskAnalysisInput,
    TaskType,
)
from .services import (
    ContextCollectionEngine,
    ContextCollectionError,
    ContextNotFoundError,
    ContextStore,
    ContextToolService,
)

__all__ = [
    "CodeContext",
    "CodeContextCreate",
    "CodeContextUpdate",
    "CollectionSummary",
    "ContextCollectionConfig",
    "ContextCollectionEngine",
    "ContextCollectionError",
    "ContextCollectionResult",
    "ContextNotFoundError",
    "ContextStore",
    "ContextToolService",
    "FreshnessReport",
    "ScoringWeights",
    "TaskAnalysisInput",
    "TaskType",
    "load_config_from_env",
]
