"""
Tests for ContextCollectionEngine: end-to-end runs over the sample code
root, signal memoisation, error wrapping and the reporting helpers.
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from taskscope.context_collection.config import ContextCollectionConfig
from taskscope.context_collection.models import (
    CodeContext,
    ContextType,
    ParsedStackTrace,
    TaskAnalysisInput,
    TaskType,
)
from taskscope.context_collection.services.collection_engine import (
    ContextCollectionEngine,
    ContextCollectionError,
    DependencyInfo,
    PatternResults,
)
from taskscope.context_collection.services.dependency_analyzer import DependencyGraph
from taskscope.context_collection.services.text_analysis import Entity, SignalBundle, SimpleSignalExtractor

pytestmark = pytest.mark.medium

NOW = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _bug_task(root, task_id="BUG-1"):
    description = (
        "Saving a profile crashes.\n"
        "TypeError: Cannot read property 'name' of undefined\n"
        f"    at processUser ({root}/src/user.js:45:12)\n"
        f"    at handleRequest ({root}/src/handler.js:8:18)\n"
        f"    at Layer.handle ({root}/node_modules/express/lib/router/layer.js:95:5)\n"
        f"    at next ({root}/node_modules/express/lib/router/route.js:137:13)"
    )
    return TaskAnalysisInput(
        task_id=task_id,
        task_type=TaskType.BUG,
        title="Profile save crashes",
        description=description,
    )


def _context(index, score, content="code", file_path="src/user.js"):
    return CodeContext(
        id=f"T_context_{index}",
        task_id="T",
        task_type=TaskType.BUG,
        context_type=ContextType.SNIPPET,
        file_path=file_path,
        content=content,
        description="function in user.js (line 1)",
        relevance_score=score,
        date_collected=NOW,
    )


class CountingExtractor(SimpleSignalExtractor):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def extract(self, text, task_type):
        self.calls += 1
        return super().extract(text, task_type)


class TestCollectContexts:

    @pytest.mark.asyncio
    async def test_bug_with_stack_trace(self, code_root):
        engine = ContextCollectionEngine(str(code_root))

        result = await engine.collect_contexts(_bug_task(code_root))

        assert any(
            c.file_path == "src/user.js" and c.start_line <= 45 <= c.end_line
            for c in result.contexts
        )
        assert result.stack_traces is not None
        assert len(result.stack_traces) == 1
        assert result.stack_traces[0].confidence > 0.5
        assert result.stack_traces[0].error_type == "TypeError"
        assert result.summary.stack_traces_found == 1
        assert result.summary.total_contexts == len(result.contexts)

    @pytest.mark.asyncio
    async def test_description_opening_with_error_line(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        task = TaskAnalysisInput(
            task_id="BUG-2",
            task_type=TaskType.BUG,
            title="Profile save crashes",
            description=(
                "TypeError: Cannot read property 'name' of undefined\n"
                f"    at processUser ({code_root}/src/user.js:45:12)\n"
                f"    at handleRequest ({code_root}/src/handler.js:2:10)\n"
                f"    at main ({code_root}/src/handler.js:5:1)"
            ),
        )

        result = await engine.collect_contexts(task)

        assert result.stack_traces is not None
        assert len(result.stack_traces) == 1
        assert result.stack_traces[0].error_type == "TypeError"
        assert result.stack_traces[0].confidence > 0.5
        assert any(
            c.file_path == "src/user.js" and c.start_line <= 45 <= c.end_line
            for c in result.contexts
        )

    def test_trace_text_keeps_fields_on_separate_lines(self):
        task = TaskAnalysisInput(
            task_id="BUG-3", task_type=TaskType.BUG, title="Crash", description="KeyError: 'id'",
            actual_behavior="500 response",
        )

        assert task.trace_text() == "Crash\nKeyError: 'id'\n500 response"
        assert task.combined_text() == "Crash KeyError: 'id' 500 response"

    @pytest.mark.asyncio
    async def test_contexts_are_ranked_and_bounded(self, code_root):
        engine = ContextCollectionEngine(str(code_root))

        result = await engine.collect_contexts(_bug_task(code_root))

        scores = [c.relevance_score for c in result.contexts]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= 0.3 for s in scores)
        assert len(result.contexts) <= 20
        assert result.summary.estimated_tokens <= 1500
        assert all(c.id.startswith("BUG-1_context_") for c in result.contexts)

    @pytest.mark.asyncio
    async def test_excluded_and_sensitive_files_never_collected(self, code_root):
        engine = ContextCollectionEngine(str(code_root))

        result = await engine.collect_contexts(_bug_task(code_root))

        paths = {c.file_path for c in result.contexts}
        assert not any("node_modules" in p for p in paths)
        assert "src/secrets.js" not in paths
        assert all(not p.startswith("/") for p in paths)

    @pytest.mark.asyncio
    async def test_result_cached(self, code_root):
        engine = ContextCollectionEngine(str(code_root))

        result = await engine.collect_contexts(_bug_task(code_root))

        assert engine.get_cached_contexts("BUG-1") == result.contexts
        assert engine.get_cached_contexts("OTHER") is None

    @pytest.mark.asyncio
    async def test_feature_task_skips_trace_parsing(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        bug = _bug_task(code_root)
        task = bug.model_copy(update={
            "task_id": "FEAT-1",
            "task_type": TaskType.FEATURE,
            "files_likely_involved": ["src/user.js"],
        })

        result = await engine.collect_contexts(task)

        assert result.stack_traces is None
        assert result.summary.stack_traces_found == 0
        assert any(c.file_path == "src/user.js" for c in result.contexts)

    @pytest.mark.asyncio
    async def test_empty_result_for_unrelated_task(self, tmp_path):
        engine = ContextCollectionEngine(str(tmp_path))
        task = TaskAnalysisInput(
            task_id="IMP-1", task_type=TaskType.IMPROVEMENT, title="Tidy", description="Nothing matches",
        )

        result = await engine.collect_contexts(task)

        assert result.contexts == []
        assert result.summary.total_contexts == 0
        assert result.summary.average_relevance_score == 0.0

    @pytest.mark.asyncio
    async def test_failures_wrapped(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        engine.section_extractor.extract_sections = Mock(side_effect=RuntimeError("disk on fire"))

        with pytest.raises(ContextCollectionError, match="disk on fire") as exc_info:
            await engine.collect_contexts(_bug_task(code_root))

        assert exc_info.value.task_id == "BUG-1"

    @pytest.mark.asyncio
    async def test_dependency_failure_is_not_fatal(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        engine.dependency_analyzer.build_dependency_graph = Mock(side_effect=OSError("unreadable"))

        result = await engine.collect_contexts(_bug_task(code_root))

        assert result.contexts
        assert result.summary.dependencies_analyzed == 0


class TestSignals:

    @pytest.mark.asyncio
    async def test_signals_memoised_per_task(self, code_root):
        extractor = CountingExtractor()
        engine = ContextCollectionEngine(str(code_root), extractor=extractor)
        task = _bug_task(code_root)

        await engine.analyze_task_text(task)
        await engine.analyze_task_text(task)
        assert extractor.calls == 1

        await engine.analyze_task_text(task.model_copy(update={"title": "Profile save crashes again"}))
        assert extractor.calls == 2

    @pytest.mark.asyncio
    async def test_caller_signals_take_precedence(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        task = _bug_task(code_root).model_copy(update={"keywords": ["reserved"], "entities": ["Account"]})

        signals = await engine.analyze_task_text(task)

        assert signals.keyword_terms == ["reserved"]
        assert [(e.name, e.kind) for e in signals.entities] == [("Account", "class")]

    def test_parse_stack_traces_drops_low_confidence(self, code_root):
        engine = ContextCollectionEngine(str(code_root))

        assert engine.parse_stack_traces("see config.ts:12") == []

    def test_parse_stack_traces_survives_parser_errors(self, code_root):
        parser = Mock()
        parser.contains_stack_trace.side_effect = ValueError("bad regex")
        engine = ContextCollectionEngine(str(code_root), stack_trace_parser=parser)

        assert engine.parse_stack_traces("anything") == []

    def test_find_relevant_patterns_routes_entities(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        signals = SignalBundle(entities=[Entity("processUser()", "function"), Entity("Account", "class")])

        results = engine.find_relevant_patterns(signals)

        assert results.searched_functions == ["processUser"]
        assert [m.file_path for m in results.functions] == ["src/user.js"]
        assert [m.name for m in results.classes] == ["Account"]
        assert results.patterns == []


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_update_config_applies_to_next_run(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        old_matcher = engine.pattern_matcher

        config = engine.update_config(max_contexts_per_task=1, cache_expiry_hours=2)
        result = await engine.collect_contexts(_bug_task(code_root))

        assert config.max_contexts_per_task == 1
        assert engine.pattern_matcher is not old_matcher
        assert engine.context_cache.expiry == timedelta(hours=2)
        assert len(result.contexts) == 1

    @pytest.mark.asyncio
    async def test_clear_caches(self, code_root):
        engine = ContextCollectionEngine(str(code_root))
        await engine.collect_contexts(_bug_task(code_root))

        engine.clear_caches()

        assert engine.get_cached_contexts("BUG-1") is None
        assert len(engine.signal_cache) == 0

    def test_root_falls_back_to_env(self, monkeypatch, code_root):
        monkeypatch.setenv("CONTEXT_ROOT", str(code_root))

        engine = ContextCollectionEngine(config=ContextCollectionConfig())

        assert engine.root == code_root.resolve()


class TestReporting:

    def test_build_summary(self):
        contexts = [
            _context(0, 0.9, content="a" * 40),
            _context(1, 0.5, file_path="src/handler.js"),
            _context(2, 0.2),
        ]

        summary = ContextCollectionEngine.build_summary(
            contexts, time.monotonic(), PatternResults(), None, [],
        )

        assert summary.total_contexts == 3
        assert (summary.high_relevance_contexts, summary.medium_relevance_contexts,
                summary.low_relevance_contexts) == (1, 1, 1)
        assert summary.average_relevance_score == pytest.approx(0.5333, abs=1e-4)
        assert summary.files_analyzed == 2
        assert summary.estimated_tokens == 12

    def test_recommendations_for_traces_and_missing_functions(self):
        traces = [
            ParsedStackTrace(language="javascript", is_valid=True, confidence=0.9, error_type="TypeError"),
            ParsedStackTrace(language="python", is_valid=True, confidence=0.6, error_type="KeyError"),
        ]
        signals = SignalBundle(entities=[Entity("saveUser()", "function")])
        patterns = PatternResults(searched_functions=["saveUser"])

        recommendations = ContextCollectionEngine.build_recommendations([], signals, patterns, traces)

        assert recommendations[0].startswith("Found 1 high-confidence stack trace(s) - ")
        assert "Multiple programming languages detected in stack traces: javascript, python" in recommendations
        assert any(r.startswith("Error types identified: TypeError, KeyError") for r in recommendations)
        assert (
            "Consider adding more specific files or code references to improve context relevance"
            in recommendations
        )
        assert "Could not find definitions for functions: saveUser" in recommendations

    def test_no_recommendations_for_strong_results(self):
        contexts = [_context(i, 0.9) for i in range(3)]

        assert ContextCollectionEngine.build_recommendations(contexts, SignalBundle(), PatternResults(), []) == []

    def test_potential_issues(self):
        contexts = [
            _context(0, 0.9, content="x" * 5001),
            _context(1, 0.1),
            _context(2, 0.2),
        ]
        info = DependencyInfo(graph=DependencyGraph(cyclic_dependencies=[["a.js", "b.js", "a.js"]]))

        issues = ContextCollectionEngine.identify_potential_issues(contexts, info)

        assert issues == [
            "Circular dependencies detected in 1 cycles",
            "Large code sections found in 1 contexts - consider breaking down",
            "Many contexts have low relevance scores - consider refining task description",
        ]

    def test_no_issues(self):
        assert ContextCollectionEngine.identify_potential_issues([_context(0, 0.9)], None) == []
