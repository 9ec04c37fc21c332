"""
Context Collection Engine

Orchestrates one collection run:

    task text -> signals -> {stack frames, definitions/patterns, dependencies}
              -> candidate sections -> scores -> filter -> contexts
              -> dedup -> token budget -> cache

Blocking stages (filesystem scans, file reads) run in worker threads and
are awaited one at a time. Runs for the same task id are serialised.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from ..config import ContextCollectionConfig, resolve_context_root
from ..models import (
    CodeContext,
    CollectionSummary,
    ContextCollectionResult,
    ParsedStackTrace,
    StackTraceContext,
    TaskAnalysisInput,
    TaskType,
)
from .dependency_analyzer import DependencyAnalyzer, DependencyGraph, FileRelationship
from .path_security import safe_resolve
from .pattern_matcher import ClassMatch, CodePatternMatcher, FunctionMatch, PatternMatch
from .relevance_scorer import RelevanceScorer
from .result_cache import ResultCache
from .section_extractor import SectionExtractor
from .stack_trace_parser import StackTraceParser
from .text_analysis import SignalBundle, SignalExtractor, SimpleSignalExtractor
from .token_budget import (
    apply_token_budget,
    convert_sections,
    deduplicate_contexts,
    estimate_tokens,
    filter_sections,
)

logger = logging.getLogger(__name__)

# Traces kept for section extraction
MIN_TRACE_CONFIDENCE = 0.5
HIGH_CONFIDENCE_TRACE = 0.8

# Similar-pattern search needs this much task text
MIN_PATTERN_TEXT_LENGTH = 50

# Entity routing
FUNCTION_ENTITY_PATTERN = re.compile(r"^[a-z][a-zA-Z0-9]*$")
CLASS_ENTITY_PATTERN = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
CALL_SUFFIX_PATTERN = re.compile(r"\s*\(.*$")

# Summary buckets
HIGH_RELEVANCE = 0.7
MEDIUM_RELEVANCE = 0.4
MIN_HIGH_RELEVANCE_CONTEXTS = 3

# Potential issue thresholds
LARGE_CONTEXT_CHARS = 5000
LOW_RELEVANCE = 0.3
LOW_RELEVANCE_SHARE = 0.5


class ContextCollectionError(Exception):
    """Raised when a collection run fails unexpectedly."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message)


@dataclass
class PatternResults:
    functions: List[FunctionMatch] = field(default_factory=list)
    classes: List[ClassMatch] = field(default_factory=list)
    patterns: List[PatternMatch] = field(default_factory=list)
    # Function names looked up, in entity order
    searched_functions: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.functions) + len(self.classes) + len(self.patterns)


@dataclass
class DependencyInfo:
    graph: DependencyGraph
    relationships: List[FileRelationship] = field(default_factory=list)


class ContextCollectionEngine:
    """
    Collects ranked code contexts for a task.

    Responsibilities:
    - Extract signals from the task text (memoised per task id)
    - Parse stack traces for bug tasks
    - Look up definitions and similar patterns, map dependencies
    - Build, score, filter, deduplicate and budget candidate sections
    - Cache the final contexts per task id

    Usage:
        engine = ContextCollectionEngine("/repo")
        result = await engine.collect_contexts(task)
    """

    def __init__(
        self,
        root_path: Optional[str] = None,
        config: Optional[ContextCollectionConfig] = None,
        extractor: Optional[SignalExtractor] = None,
        context_cache: Optional[ResultCache] = None,
        signal_cache: Optional[ResultCache] = None,
        stack_trace_parser: Optional[StackTraceParser] = None,
    ):
        self.root: Path = resolve_context_root(root_path)
        self.config = config or ContextCollectionConfig()
        self.extractor = extractor or SimpleSignalExtractor()
        self.context_cache = context_cache or ResultCache(
            expiry_hours=self.config.cache_expiry_hours,
            max_entries=self.config.cache_max_entries,
            eviction=self.config.cache_eviction,
        )
        self.signal_cache = signal_cache or ResultCache(
            expiry_hours=self.config.cache_expiry_hours,
            max_entries=self.config.cache_max_entries,
            eviction=self.config.cache_eviction,
        )
        self.stack_trace_parser = stack_trace_parser or StackTraceParser()
        self._build_components()

        logger.info(
            f"Context collection engine ready (root={self.root}, extractor={self.extractor.name})",
            extra={"root": str(self.root), "extractor": self.extractor.name},
        )

    def _build_components(self) -> None:
        config = self.config
        self.pattern_matcher = CodePatternMatcher(
            self.root,
            include_extensions=config.include_extensions,
            exclude_patterns=config.exclude_patterns,
            max_file_size=config.max_file_size,
        )
        self.dependency_analyzer = DependencyAnalyzer(
            self.root,
            exclude_patterns=config.exclude_patterns,
            max_file_size=config.max_file_size,
        )
        self.section_extractor = SectionExtractor(self.root, config)
        self.scorer = RelevanceScorer(config.scoring_weights, self.root, config.exclude_patterns)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def collect_contexts(self, task: TaskAnalysisInput) -> ContextCollectionResult:
        """
        Run the full pipeline for one task.

        Raises:
            ContextCollectionError: If any stage fails unexpectedly
        """
        async with self.context_cache.lock(task.task_id):
            try:
                return await self._collect(task)
            except Exception as e:
                logger.error(
                    f"Context collection failed for task {task.task_id}: {e}",
                    exc_info=True,
                    extra={"task_id": task.task_id},
                )
                raise ContextCollectionError(
                    f"Context collection failed for task {task.task_id}: {e}",
                    task_id=task.task_id,
                ) from e

    def get_cached_contexts(self, task_id: str) -> Optional[List[CodeContext]]:
        """Contexts from the last run for this task, or None if missing or expired."""
        return self.context_cache.get(task_id)

    def update_config(self, **changes: Any) -> ContextCollectionConfig:
        """Apply configuration changes to subsequent runs."""
        self.config = self.config.with_updates(**changes)
        for cache in (self.context_cache, self.signal_cache):
            cache.expiry = timedelta(hours=self.config.cache_expiry_hours)
            cache.max_entries = self.config.cache_max_entries
            cache.eviction = self.config.cache_eviction
        self._build_components()
        logger.info(f"Configuration updated: {sorted(changes)}", extra={"changed": sorted(changes)})
        return self.config

    def clear_caches(self) -> None:
        self.context_cache.clear()
        self.signal_cache.clear()
        logger.info("Context and signal caches cleared")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _collect(self, task: TaskAnalysisInput) -> ContextCollectionResult:
        start_time = time.monotonic()
        config = self.config
        task_type = task.task_type.value
        logger.info(
            f"Collecting contexts for {task_type} task {task.task_id}",
            extra={"task_id": task.task_id, "task_type": task_type},
        )

        signals = await self.analyze_task_text(task)

        stack_traces: List[ParsedStackTrace] = []
        if task.task_type == TaskType.BUG:
            stack_traces = self.parse_stack_traces(task.trace_text())

        pattern_results = PatternResults()
        if config.enable_pattern_matching:
            pattern_results = await asyncio.to_thread(self.find_relevant_patterns, signals)

        dependency_info = None
        if config.enable_dependency_analysis:
            dependency_info = await asyncio.to_thread(self.analyze_dependencies, task.files_likely_involved)

        sections = await asyncio.to_thread(
            self.section_extractor.extract_sections,
            signals,
            task.files_likely_involved,
            self.stack_trace_contexts(stack_traces),
            pattern_results.functions,
            pattern_results.classes,
            dependency_info.relationships if dependency_info else [],
            pattern_results.patterns,
        )

        ranked = self.scorer.rank(sections, signals, task_type, task.files_likely_involved)
        kept = filter_sections(ranked, config.relevance_threshold, config.max_contexts_per_task)
        contexts = convert_sections(kept, task.task_id, task.task_type)

        if config.enable_content_deduplication:
            contexts = deduplicate_contexts(contexts)
        contexts = apply_token_budget(
            contexts,
            config.token_limit_for(task_type),
            config.max_tokens_per_context,
            summarize=config.enable_intelligent_summarization,
            compression_threshold=config.compression_threshold,
        )

        summary = self.build_summary(contexts, start_time, pattern_results, dependency_info, stack_traces)
        recommendations = self.build_recommendations(contexts, signals, pattern_results, stack_traces)
        potential_issues = self.identify_potential_issues(contexts, dependency_info)

        self.context_cache.put(task.task_id, contexts)

        logger.info(
            f"Collected {len(contexts)} context(s) for task {task.task_id} in {summary.processing_time_ms}ms",
            extra={
                "task_id": task.task_id,
                "contexts": len(contexts),
                "candidates": len(sections),
                "estimated_tokens": summary.estimated_tokens,
            },
        )
        return ContextCollectionResult(
            contexts=contexts,
            summary=summary,
            recommendations=recommendations,
            potential_issues=potential_issues,
            stack_traces=stack_traces or None,
        )

    async def analyze_task_text(self, task: TaskAnalysisInput) -> SignalBundle:
        """Signals for the task, with caller-supplied keywords/entities taking precedence."""
        text = task.combined_text()
        signals = self.signal_cache.get(task.task_id)
        if signals is None or signals.combined_text != text or signals.extractor != self.extractor.name:
            signals = await self.extractor.extract_async(text, task.task_type.value)
            self.signal_cache.put(task.task_id, signals)
        return signals.with_overrides(keywords=task.keywords, entities=task.entities)

    def parse_stack_traces(self, text: str) -> List[ParsedStackTrace]:
        """Valid traces with confidence above MIN_TRACE_CONFIDENCE; [] on any parser failure."""
        try:
            if not self.stack_trace_parser.contains_stack_trace(text):
                return []
            traces = self.stack_trace_parser.extract_stack_traces(text)
        except Exception as e:
            logger.warning(f"Stack trace parsing failed: {e}", exc_info=True)
            return []

        kept = [t for t in traces if t.is_valid and t.confidence > MIN_TRACE_CONFIDENCE]
        if kept:
            logger.info(
                f"Found {len(kept)} stack trace(s)",
                extra={"languages": sorted({t.language for t in kept})},
            )
        return kept

    def stack_trace_contexts(self, traces: Sequence[ParsedStackTrace]) -> List[Tuple[StackTraceContext, float]]:
        pairs = []
        for trace in traces:
            for context in self.stack_trace_parser.extract_stack_trace_contexts(trace):
                pairs.append((context, trace.confidence))
        return pairs

    def find_relevant_patterns(self, signals: SignalBundle) -> PatternResults:
        """Route entities to function/class lookup and search for similar code."""
        results = PatternResults()
        seen_functions = set()
        seen_classes = set()

        for entity in signals.entities:
            name = entity.name
            if "(" in name or FUNCTION_ENTITY_PATTERN.match(name):
                function_name = CALL_SUFFIX_PATTERN.sub("", name)
                if function_name and function_name not in results.searched_functions:
                    results.searched_functions.append(function_name)
                    for match in self.pattern_matcher.find_function_definitions(function_name):
                        key = (match.file_path, match.start_line)
                        if key not in seen_functions:
                            seen_functions.add(key)
                            results.functions.append(match)

            if CLASS_ENTITY_PATTERN.match(name):
                for match in self.pattern_matcher.find_class_definitions(name):
                    key = (match.file_path, match.start_line)
                    if key not in seen_classes:
                        seen_classes.add(key)
                        results.classes.append(match)

        if len(signals.combined_text) > MIN_PATTERN_TEXT_LENGTH:
            results.patterns = self.pattern_matcher.find_similar_patterns(signals.combined_text)

        logger.debug(
            f"Pattern search: {len(results.functions)} function(s), "
            f"{len(results.classes)} class(es), {len(results.patterns)} pattern(s)"
        )
        return results

    def analyze_dependencies(self, files_likely_involved: Sequence[str]) -> Optional[DependencyInfo]:
        """Dependency graph plus relationships of the named files; None on failure."""
        try:
            graph = self.dependency_analyzer.build_dependency_graph()
            relationships = []
            for file_path in files_likely_involved:
                resolved = safe_resolve(file_path, self.root, self.config.exclude_patterns)
                if resolved is None or not resolved.is_file():
                    continue
                relative = resolved.relative_to(self.root).as_posix()
                relationship = graph.nodes.get(relative) or self.dependency_analyzer.map_file_relationships(resolved)
                if relationship is not None:
                    relationships.append(relationship)
            return DependencyInfo(graph=graph, relationships=relationships)
        except Exception as e:
            logger.warning(f"Dependency analysis failed, continuing without it: {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def build_summary(
        contexts: List[CodeContext],
        start_time: float,
        pattern_results: PatternResults,
        dependency_info: Optional[DependencyInfo],
        stack_traces: List[ParsedStackTrace],
    ) -> CollectionSummary:
        scores = [c.relevance_score for c in contexts]
        return CollectionSummary(
            total_contexts=len(contexts),
            high_relevance_contexts=sum(1 for s in scores if s > HIGH_RELEVANCE),
            medium_relevance_contexts=sum(1 for s in scores if MEDIUM_RELEVANCE < s <= HIGH_RELEVANCE),
            low_relevance_contexts=sum(1 for s in scores if s <= MEDIUM_RELEVANCE),
            average_relevance_score=round(sum(scores) / len(scores), 4) if scores else 0.0,
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
            files_analyzed=len({c.file_path for c in contexts}),
            patterns_found=pattern_results.total,
            dependencies_analyzed=len(dependency_info.graph.edges) if dependency_info else 0,
            stack_traces_found=len(stack_traces),
            estimated_tokens=sum(estimate_tokens(c.content) for c in contexts),
        )

    @staticmethod
    def build_recommendations(
        contexts: List[CodeContext],
        signals: SignalBundle,
        pattern_results: PatternResults,
        stack_traces: List[ParsedStackTrace],
    ) -> List[str]:
        recommendations = []

        if stack_traces:
            confident = [t for t in stack_traces if t.confidence > HIGH_CONFIDENCE_TRACE]
            if confident:
                recommendations.append(
                    f"Found {len(confident)} high-confidence stack trace(s) - "
                    "code contexts automatically collected from error locations"
                )
            languages = list(dict.fromkeys(t.language for t in stack_traces))
            if len(languages) > 1:
                recommendations.append(
                    f"Multiple programming languages detected in stack traces: {', '.join(languages)}"
                )
            error_types = list(dict.fromkeys(t.error_type for t in stack_traces if t.error_type))
            if error_types:
                recommendations.append(
                    f"Error types identified: {', '.join(error_types)} - "
                    "consider adding error handling for these cases"
                )

        if sum(1 for c in contexts if c.relevance_score > HIGH_RELEVANCE) < MIN_HIGH_RELEVANCE_CONTEXTS:
            recommendations.append(
                "Consider adding more specific files or code references to improve context relevance"
            )

        found = {f.name for f in pattern_results.functions}
        missing = []
        for entity in signals.entities_of_kind("function"):
            name = CALL_SUFFIX_PATTERN.sub("", entity.name)
            if name in pattern_results.searched_functions and name not in found and name not in missing:
                missing.append(name)
        if missing:
            recommendations.append(f"Could not find definitions for functions: {', '.join(missing)}")

        if pattern_results.patterns:
            recommendations.append(
                "Similar code patterns found - consider checking for consistent implementation"
            )

        return recommendations

    @staticmethod
    def identify_potential_issues(
        contexts: List[CodeContext],
        dependency_info: Optional[DependencyInfo],
    ) -> List[str]:
        issues = []

        if dependency_info and dependency_info.graph.cyclic_dependencies:
            issues.append(
                f"Circular dependencies detected in {len(dependency_info.graph.cyclic_dependencies)} cycles"
            )

        large = [c for c in contexts if c.content and len(c.content) > LARGE_CONTEXT_CHARS]
        if large:
            issues.append(f"Large code sections found in {len(large)} contexts - consider breaking down")

        low = sum(1 for c in contexts if c.relevance_score < LOW_RELEVANCE)
        if low > len(contexts) * LOW_RELEVANCE_SHARE:
            issues.append("Many contexts have low relevance scores - consider refining task description")

        return issues
