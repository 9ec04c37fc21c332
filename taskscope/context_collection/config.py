"""
Context Collection Configuration

Every knob of the collection pipeline, with defaults, plus the loader that
reads overrides from the environment (and a local .env file).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Directory names that never yield candidates (substring match on resolved paths)
DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
]

DEFAULT_INCLUDE_EXTENSIONS: List[str] = [
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".rb", ".php", ".go", ".cs",
]

# Token ceilings per task type; anything else falls back to max_tokens_per_task
DEFAULT_TASK_TYPE_TOKEN_LIMITS: Dict[str, int] = {
    "bug": 1500,
    "feature": 2500,
    "improvement": 2000,
}


class ScoringWeights(BaseModel):
    """Weight vector for the relevance scorer."""

    keyword_match: float = 0.3
    entity_match: float = 0.3
    intent_match: float = 0.2
    pattern_similarity: float = 0.1
    dependency_strength: float = 0.05
    file_proximity: float = 0.05


class ContextCollectionConfig(BaseModel):
    """Construction- or update-time configuration of the pipeline."""

    max_contexts_per_task: int = Field(default=20, ge=1)
    relevance_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_file_size: int = Field(default=100_000, ge=1)  # bytes
    exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    include_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_EXTENSIONS))

    cache_expiry_hours: float = Field(default=24, gt=0)
    cache_max_entries: int = Field(default=100, ge=1)
    cache_eviction: Literal["insertion", "lru"] = "insertion"

    enable_staleness_tracking: bool = True
    enable_pattern_matching: bool = True
    enable_dependency_analysis: bool = True
    enable_content_deduplication: bool = True
    enable_intelligent_summarization: bool = True
    redact_secrets: bool = True

    max_tokens_per_task: int = Field(default=2000, ge=1)
    max_tokens_per_context: int = Field(default=200, ge=1)
    compression_threshold: int = Field(default=500, ge=0)
    task_type_token_limits: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_TASK_TYPE_TOKEN_LIMITS)
    )

    scoring_weights: ScoringWeights = Field(default_factory=ScoringWeights)

    def token_limit_for(self, task_type: str) -> int:
        """Token ceiling for a task type (falls back to the global ceiling)."""
        key = getattr(task_type, "value", task_type)
        return self.task_type_token_limits.get(key, self.max_tokens_per_task)

    def with_updates(self, **changes: Any) -> "ContextCollectionConfig":
        """Return a validated copy with the given fields replaced.

        Nested dicts (scoring weights, token limits) are merged rather
        than replaced.
        """
        data = self.model_dump()
        for key, value in changes.items():
            if isinstance(value, BaseModel):
                value = value.model_dump()
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return ContextCollectionConfig.model_validate(data)


def _env_number(name: str, cast):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return None


# Environment variable -> (config field, type)
_ENV_OVERRIDES = {
    "TASKSCOPE_MAX_CONTEXTS": ("max_contexts_per_task", int),
    "TASKSCOPE_RELEVANCE_THRESHOLD": ("relevance_threshold", float),
    "TASKSCOPE_MAX_FILE_SIZE": ("max_file_size", int),
    "TASKSCOPE_CACHE_EXPIRY_HOURS": ("cache_expiry_hours", float),
    "TASKSCOPE_MAX_TOKENS_PER_TASK": ("max_tokens_per_task", int),
    "TASKSCOPE_MAX_TOKENS_PER_CONTEXT": ("max_tokens_per_context", int),
}


def load_config_from_env(
    env_file: Optional[Path] = None,
    base: Optional[ContextCollectionConfig] = None,
) -> ContextCollectionConfig:
    """
    Build a config from defaults plus TASKSCOPE_* environment overrides.

    Args:
        env_file: Optional .env file to load first (existing variables win)
        base: Config to apply overrides on top of (defaults if omitted)

    Returns:
        Validated ContextCollectionConfig
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    overrides = {}
    for env_name, (field_name, cast) in _ENV_OVERRIDES.items():
        value = _env_number(env_name, cast)
        if value is not None:
            overrides[field_name] = value

    config = base or ContextCollectionConfig()
    if overrides:
        logger.info(
            f"Applying {len(overrides)} config override(s) from environment",
            extra={"overrides": overrides},
        )
        config = config.with_updates(**overrides)
    return config


def resolve_context_root(root_path: Optional[str] = None) -> Path:
    """Allowed root for file reads: explicit argument, then CONTEXT_ROOT, then cwd."""
    chosen = root_path or os.environ.get("CONTEXT_ROOT") or os.getcwd()
    return Path(chosen).resolve()
