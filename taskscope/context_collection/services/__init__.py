"""
Context Collection Services

Pipeline stages, the collection engine, persistence and the tool service.
"""

from .collection_engine import ContextCollectionEngine, ContextCollectionError
from .context_service import (
    ContextNotFoundError,
    ContextToolService,
    format_collection_result,
    format_contexts,
    format_freshness_report,
)
from .context_store import ContextStore
from .dependency_analyzer import DependencyAnalyzer, DependencyGraph, FileRelationship
from .llm_signal_extractor import SIGNAL_EXTRACTORS, LLMSignalExtractor, build_signal_extractor
from .path_security import is_sensitive_file, redact_secrets, safe_resolve
from .pattern_matcher import CodePatternMatcher, PythonAstDefinitionExtractor, RegexDefinitionExtractor
from .relevance_scorer import RelevanceScorer
from .result_cache import ResultCache
from .section_extractor import CodeSection, SectionExtractor
from .stack_trace_parser import StackTraceParser
from .text_analysis import SignalBundle, SignalExtractor, SimpleSignalExtractor, TextAnalyzer
from .token_budget import TokenBudgetOptimizer, apply_token_budget, estimate_tokens, summarize_content

__all__ = [
    "CodePatternMatcher",
    "CodeSection",
    "ContextCollectionEngine",
    "ContextCollectionError",
    "ContextNotFoundError",
    "ContextStore",
    "ContextToolService",
    "DependencyAnalyzer",
    "DependencyGraph",
    "FileRelationship",
    "LLMSignalExtractor",
    "SIGNAL_EXTRACTORS",
    "PythonAstDefinitionExtractor",
    "RegexDefinitionExtractor",
    "RelevanceScorer",
    "ResultCache",
    "SectionExtractor",
    "SignalBundle",
    "SignalExtractor",
    "SimpleSignalExtractor",
    "StackTraceParser",
    "TextAnalyzer",
    "TokenBudgetOptimizer",
    "apply_token_budget",
    "build_signal_extractor",
    "estimate_tokens",
    "format_collection_result",
    "format_contexts",
    "format_freshness_report",
    "is_sensitive_file",
    "redact_secrets",
    "safe_resolve",
    "summarize_content",
]
