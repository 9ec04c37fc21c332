"""
Tests for SectionExtractor: candidate sections from frames, definitions,
named files, imports and similar patterns.
"""

import pytest

from conftest import write_files
from taskscope.context_collection.config import ContextCollectionConfig
from taskscope.context_collection.models import StackTraceContext
from taskscope.context_collection.services.dependency_analyzer import FileRelationship, ImportStatement
from taskscope.context_collection.services.pattern_matcher import ClassMatch, FunctionMatch, PatternMatch
from taskscope.context_collection.services.section_extractor import (
    SectionExtractor,
    frame_section_score,
    group_relevant_lines,
)
from taskscope.context_collection.services.text_analysis import Entity, Keyword, SignalBundle


@pytest.fixture
def extractor(code_root):
    return SectionExtractor(code_root, ContextCollectionConfig())


def _frame(path, line=45, priority="high", function="processUser"):
    return StackTraceContext(
        file_path=str(path), line_number=line, context_lines=10, priority=priority, function_name=function,
    )


class TestStackFrameSections:

    def test_window_around_frame(self, extractor, code_root):
        sections = extractor.stack_frame_sections([(_frame(code_root / "src" / "user.js"), 0.63)])

        assert len(sections) == 1
        section = sections[0]
        assert section.file_path == "src/user.js"
        assert section.start_line == 35
        assert section.end_line == 48
        assert section.start_line <= 45 <= section.end_line
        assert "user.name.toUpperCase()" in section.content
        assert section.kind == "function"
        assert section.relevance_score == pytest.approx(0.567)
        assert section.related_entities == ["processUser"]

    def test_window_clamped_to_file(self, extractor):
        sections = extractor.stack_frame_sections([(_frame("src/handler.js", line=2), 0.5)])

        assert sections[0].start_line == 1

    def test_unreadable_frames_skipped(self, extractor, code_root):
        frames = [
            (_frame(code_root / "node_modules" / "vendor" / "index.js", line=1), 0.9),
            (_frame("/etc/passwd", line=1), 0.9),
            (_frame("src/missing.js", line=1), 0.9),
        ]

        assert extractor.stack_frame_sections(frames) == []

    @pytest.mark.parametrize("priority,confidence,expected", [
        ("high", 0.63, 0.567),
        ("medium", 1.0, 0.7),
        ("low", 1.0, 0.5),
        ("unknown", 1.0, 0.5),
        ("high", 2.0, 1.0),
    ])
    def test_frame_section_score(self, priority, confidence, expected):
        assert frame_section_score(priority, confidence) == pytest.approx(expected)


class TestDefinitionSections:

    def test_function_section(self, extractor):
        match = FunctionMatch(
            name="processUser", file_path="src/user.js", start_line=41, end_line=46,
            signature="function processUser(user)", relevance_score=0.8,
        )

        sections = extractor.function_sections([match])

        assert len(sections) == 1
        assert sections[0].content.startswith("function processUser(user) {")
        assert sections[0].relevance_score == 0.8
        assert sections[0].related_entities == ["processUser"]

    def test_class_section(self, extractor):
        match = ClassMatch(
            name="Account", file_path="app/account.py", start_line=1, end_line=8,
            methods=["__init__", "display_name"],
        )

        sections = extractor.class_sections([match])

        assert sections[0].kind == "class"
        assert sections[0].related_entities == ["Account", "__init__", "display_name"]

    def test_blank_range_skipped(self, extractor):
        match = FunctionMatch(
            name="gap", file_path="app/account.py", start_line=3, end_line=3, signature="",
        )

        assert extractor.function_sections([match]) == []


class TestUsageSections:

    def test_hits_grouped_into_one_section(self, extractor):
        signals = SignalBundle(
            keywords=[Keyword("request", 0.5)],
            entities=[Entity("processUser", "function")],
        )

        sections = extractor.usage_sections("src/handler.js", signals)

        assert len(sections) == 1
        section = sections[0]
        assert section.kind == "usage"
        assert section.start_line == 1
        assert section.related_entities == ["processUser"]
        # hits on lines 1, 4, 6, 8, 12 scoring 2, .5, .5, 2, .5
        assert section.relevance_score == pytest.approx(1.1)

    def test_distant_hits_split(self, code_root, extractor):
        lines = ["alpha marker"] + ["filler"] * 28 + ["alpha marker"]
        write_files(code_root, {"src/notes.js": "\n".join(lines) + "\n"})
        signals = SignalBundle(keywords=[Keyword("alpha")])

        sections = extractor.usage_sections("src/notes.js", signals)

        assert [(s.start_line, s.end_line) for s in sections] == [(1, 6), (25, 30)]

    def test_trailing_newline_adds_no_line(self, code_root, extractor):
        write_files(code_root, {"src/short.js": "const alpha = 1;\nexport { alpha };\n"})
        signals = SignalBundle(keywords=[Keyword("alpha")])

        sections = extractor.usage_sections("src/short.js", signals)

        assert [(s.start_line, s.end_line) for s in sections] == [(1, 2)]

    def test_sensitive_file_not_read(self, extractor):
        signals = SignalBundle(keywords=[Keyword("apikey")])
        assert extractor.usage_sections("src/secrets.js", signals) == []

    def test_no_hits(self, extractor):
        signals = SignalBundle(keywords=[Keyword("nonexistentterm")])
        assert extractor.usage_sections("src/user.js", signals) == []

    def test_group_relevant_lines(self):
        groups = group_relevant_lines([(1, 1.0, ["a"]), (5, 3.0, []), (40, 2.0, ["b"])])

        assert [(g.start_line, g.end_line) for g in groups] == [(1, 5), (40, 40)]
        assert groups[0].average_score == 2.0
        assert groups[1].entities == ["b"]


class TestImportAndPatternSections:

    def test_import_section(self, extractor):
        relationship = FileRelationship(
            file_path="src/handler.js",
            imports=[ImportStatement(source="./user", imported=["processUser"], kind="require", line=1)],
        )

        sections = extractor.import_sections([relationship])

        assert len(sections) == 1
        assert (sections[0].start_line, sections[0].end_line) == (1, 2)
        assert sections[0].kind == "import"
        assert sections[0].relevance_score == 0.6
        assert "require('./user')" in sections[0].content

    def test_weak_patterns_dropped(self, extractor):
        patterns = [
            PatternMatch(pattern="p", file_path="src/user.js", start_line=41, end_line=46, similarity=0.95),
            PatternMatch(pattern="p", file_path="src/handler.js", start_line=6, end_line=10, similarity=0.5),
        ]

        sections = extractor.pattern_sections(patterns)

        assert [s.file_path for s in sections] == ["src/user.js"]
        assert sections[0].kind == "usage"

    def test_pattern_sections_capped(self, extractor):
        patterns = [
            PatternMatch(pattern="p", file_path="src/user.js", start_line=41, end_line=46, similarity=0.7 + i / 100)
            for i in range(12)
        ]

        sections = extractor.pattern_sections(patterns)

        assert len(sections) == 10
        assert sections[0].relevance_score == pytest.approx(0.81)


class TestRedaction:

    def test_secrets_redacted(self, code_root):
        write_files(code_root, {"src/client.js": 'const api_key = "sk-live-987654";\nconnect(api_key);\n'})
        extractor = SectionExtractor(code_root, ContextCollectionConfig())

        content = extractor.read_section("src/client.js", 1, 2)

        assert "sk-live-987654" not in content
        assert "[REDACTED]" in content

    def test_annotated_parameters_left_intact(self, code_root):
        source = (
            "def login(username, password: str, token: str = None):\n"
            "    session = authenticate(username, password)\n"
            "    return session\n"
        )
        write_files(code_root, {"app/auth.py": source})
        extractor = SectionExtractor(code_root, ContextCollectionConfig())
        signals = SignalBundle(entities=[Entity("login", "function")])

        sections = extractor.usage_sections("app/auth.py", signals)

        assert len(sections) == 1
        assert sections[0].content == source.rstrip("\n")

    def test_redaction_disabled(self, code_root):
        write_files(code_root, {"src/client.js": 'const api_key = "sk-live-987654";\n'})
        extractor = SectionExtractor(code_root, ContextCollectionConfig(redact_secrets=False))

        assert "sk-live-987654" in extractor.read_section("src/client.js", 1, 1)


class TestExtractSections:

    def test_emission_order(self, extractor, code_root):
        signals = SignalBundle(entities=[Entity("processUser", "function")])
        function = FunctionMatch(
            name="processUser", file_path="src/user.js", start_line=41, end_line=46, signature="",
        )
        relationship = FileRelationship(
            file_path="src/handler.js",
            imports=[ImportStatement(source="./user", imported=["processUser"], kind="require", line=1)],
        )

        sections = extractor.extract_sections(
            signals,
            files_likely_involved=["src/handler.js"],
            trace_contexts=[(_frame(code_root / "src" / "user.js"), 0.63)],
            functions=[function],
            relationships=[relationship],
        )

        assert [s.kind for s in sections] == ["function", "function", "usage", "import"]
