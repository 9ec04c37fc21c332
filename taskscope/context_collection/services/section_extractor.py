"""
Candidate Section Extractor

Turns the outputs of the upstream stages (stack frames, definition matches,
explicitly named files, import statements, similar patterns) into
CodeSection candidates with an interim score.

Every file read goes through safe_resolve and the size limit; a file that
cannot be read contributes nothing.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import ContextCollectionConfig
from ..models import StackTraceContext
from .dependency_analyzer import FileRelationship
from .path_security import is_sensitive_file, redact_secrets, safe_resolve
from .pattern_matcher import ClassMatch, FunctionMatch, PatternMatch
from .text_analysis import SignalBundle

logger = logging.getLogger(__name__)

# Stack frame priority -> base score, multiplied by the trace confidence
FRAME_PRIORITY_SCORES = {
    "high": 0.9,
    "medium": 0.7,
    "low": 0.5,
}

USAGE_CONTEXT_SIZE = 5  # lines kept around each group of hits
USAGE_ENTITY_HIT_SCORE = 2.0

IMPORT_SECTION_SCORE = 0.6

# Similar patterns weaker than this stay out of the candidate list
PATTERN_SECTION_MIN_SIMILARITY = 0.6
MAX_PATTERN_SECTIONS = 10

SECTION_KINDS = ("function", "class", "import", "usage", "comment")


@dataclass
class CodeSection:
    """A candidate excerpt before scoring and conversion."""

    file_path: str
    start_line: int
    end_line: int
    content: str
    relevance_score: float
    kind: str  # function, class, import, usage, comment
    related_entities: List[str] = field(default_factory=list)


@dataclass
class _LineGroup:
    start_line: int
    end_line: int
    scores: List[float] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        return sum(self.scores) / len(self.scores) if self.scores else 0.0


def frame_section_score(priority: str, confidence: float) -> float:
    return min(1.0, FRAME_PRIORITY_SCORES.get(priority, FRAME_PRIORITY_SCORES["low"]) * confidence)


def group_relevant_lines(
    hits: Sequence[Tuple[int, float, List[str]]],
    context_size: int = USAGE_CONTEXT_SIZE,
) -> List[_LineGroup]:
    """
    Merge (line, score, entities) hits closer than 2*context_size into groups.

    Hits must be in ascending line order.
    """
    groups: List[_LineGroup] = []
    current: Optional[_LineGroup] = None

    for line_number, score, entities in hits:
        if current is not None and line_number - current.end_line <= context_size * 2:
            current.end_line = line_number
            current.scores.append(score)
        else:
            current = _LineGroup(start_line=line_number, end_line=line_number, scores=[score])
            groups.append(current)
        for entity in entities:
            if entity not in current.entities:
                current.entities.append(entity)
    return groups


class SectionExtractor:
    """
    Builds candidate sections for one collection run.

    Usage:
        extractor = SectionExtractor(root, config)
        sections = extractor.extract_sections(
            signals, files_likely_involved,
            trace_contexts=[(ctx, trace.confidence)],
            functions=functions, classes=classes,
            relationships=relationships, patterns=patterns,
        )

    Section file paths are root-relative POSIX paths.
    """

    def __init__(self, root: Path, config: ContextCollectionConfig):
        self.root = Path(root).resolve()
        self.config = config
        self._lines: Dict[Path, Optional[List[str]]] = {}

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def resolve(self, file_path: str) -> Optional[Path]:
        return safe_resolve(file_path, self.root, self.config.exclude_patterns)

    def relative(self, path: Path) -> str:
        if path == self.root:
            return "."
        return path.relative_to(self.root).as_posix()

    def read_lines(self, file_path: str) -> Optional[List[str]]:
        """Lines of an allowed file, or None when it is out of bounds or unreadable."""
        path = self.resolve(file_path)
        if path is None:
            return None
        if path in self._lines:
            return self._lines[path]

        lines = None
        if is_sensitive_file(self.relative(path)):
            self._lines[path] = None
            return None

        try:
            if not path.is_file():
                logger.debug(f"Not a file: {file_path}")
            elif path.stat().st_size > self.config.max_file_size:
                logger.debug(
                    f"Skipping large file: {file_path}",
                    extra={"path": str(path), "max_file_size": self.config.max_file_size},
                )
            else:
                lines = path.read_text(encoding="utf-8", errors="ignore").splitlines()
        except OSError as e:
            logger.warning(f"Could not read {file_path}: {e}", extra={"path": str(path)})

        self._lines[path] = lines
        return lines

    def read_section(self, file_path: str, start_line: int, end_line: int) -> Optional[str]:
        lines = self.read_lines(file_path)
        if lines is None:
            return None
        content = "\n".join(lines[max(0, start_line - 1):end_line])
        if not content.strip():
            return None
        return redact_secrets(content) if self.config.redact_secrets else content

    def clear(self) -> None:
        self._lines.clear()

    # ------------------------------------------------------------------
    # Section builders
    # ------------------------------------------------------------------

    def stack_frame_sections(
        self,
        trace_contexts: Sequence[Tuple[StackTraceContext, float]],
    ) -> List[CodeSection]:
        """Windows around each user-code frame, scored by priority and trace confidence."""
        sections = []
        for context, confidence in trace_contexts:
            path = self.resolve(context.file_path)
            lines = self.read_lines(context.file_path) if path else None
            if lines is None:
                continue

            start_line = max(1, context.line_number - context.context_lines)
            end_line = min(len(lines), context.line_number + context.context_lines)
            content = self.read_section(context.file_path, start_line, end_line)
            if content is None:
                continue

            sections.append(CodeSection(
                file_path=self.relative(path),
                start_line=start_line,
                end_line=end_line,
                content=content,
                relevance_score=frame_section_score(context.priority, confidence),
                kind="function",
                related_entities=[context.function_name] if context.function_name else [],
            ))
        return sections

    def function_sections(self, matches: Sequence[FunctionMatch]) -> List[CodeSection]:
        sections = []
        for match in matches:
            content = self.read_section(match.file_path, match.start_line, match.end_line)
            if content is None:
                continue
            sections.append(CodeSection(
                file_path=match.file_path,
                start_line=match.start_line,
                end_line=match.end_line,
                content=content,
                relevance_score=match.relevance_score,
                kind="function",
                related_entities=[match.name],
            ))
        return sections

    def class_sections(self, matches: Sequence[ClassMatch]) -> List[CodeSection]:
        sections = []
        for match in matches:
            content = self.read_section(match.file_path, match.start_line, match.end_line)
            if content is None:
                continue
            sections.append(CodeSection(
                file_path=match.file_path,
                start_line=match.start_line,
                end_line=match.end_line,
                content=content,
                relevance_score=match.relevance_score,
                kind="class",
                related_entities=[match.name, *match.methods],
            ))
        return sections

    def usage_sections(self, file_path: str, signals: SignalBundle) -> List[CodeSection]:
        """
        Scan one named file for keyword and entity hits.

        A keyword hit (case-insensitive) adds the keyword's weight, an entity
        hit (case-sensitive) adds 2. Nearby hits are grouped and each group
        is widened by USAGE_CONTEXT_SIZE lines.
        """
        path = self.resolve(file_path)
        lines = self.read_lines(file_path) if path else None
        if lines is None:
            return []

        keywords = [k for k in signals.keywords if k.term]
        entities = [e for e in signals.entity_names if e]

        hits = []
        for index, line in enumerate(lines):
            lower_line = line.lower()
            score = sum(k.weight for k in keywords if k.term.lower() in lower_line)
            seen = [e for e in entities if e in line]
            score += USAGE_ENTITY_HIT_SCORE * len(seen)
            if score > 0:
                hits.append((index + 1, score, seen))

        sections = []
        for group in group_relevant_lines(hits):
            start_line = max(1, group.start_line - USAGE_CONTEXT_SIZE)
            end_line = min(len(lines), group.end_line + USAGE_CONTEXT_SIZE)
            content = self.read_section(file_path, start_line, end_line)
            if content is None:
                continue
            sections.append(CodeSection(
                file_path=self.relative(path),
                start_line=start_line,
                end_line=end_line,
                content=content,
                relevance_score=group.average_score,
                kind="usage",
                related_entities=group.entities,
            ))

        logger.debug(f"Usage scan of {file_path}: {len(hits)} hit line(s), {len(sections)} section(s)")
        return sections

    def import_sections(self, relationships: Sequence[FileRelationship]) -> List[CodeSection]:
        sections = []
        for relationship in relationships:
            for statement in relationship.imports:
                content = self.read_section(relationship.file_path, statement.line, statement.line + 1)
                if content is None:
                    continue
                sections.append(CodeSection(
                    file_path=relationship.file_path,
                    start_line=statement.line,
                    end_line=statement.line + 1,
                    content=content,
                    relevance_score=IMPORT_SECTION_SCORE,
                    kind="import",
                    related_entities=list(statement.imported),
                ))
        return sections

    def pattern_sections(self, patterns: Sequence[PatternMatch]) -> List[CodeSection]:
        """Exact and structural pattern matches as usage sections."""
        strong = [p for p in patterns if p.similarity > PATTERN_SECTION_MIN_SIMILARITY]
        strong.sort(key=lambda p: p.similarity, reverse=True)

        sections = []
        for match in strong[:MAX_PATTERN_SECTIONS]:
            content = self.read_section(match.file_path, match.start_line, match.end_line)
            if content is None:
                continue
            sections.append(CodeSection(
                file_path=match.file_path,
                start_line=match.start_line,
                end_line=match.end_line,
                content=content,
                relevance_score=match.similarity,
                kind="usage",
            ))
        return sections

    def extract_sections(
        self,
        signals: SignalBundle,
        files_likely_involved: Sequence[str] = (),
        trace_contexts: Sequence[Tuple[StackTraceContext, float]] = (),
        functions: Sequence[FunctionMatch] = (),
        classes: Sequence[ClassMatch] = (),
        relationships: Sequence[FileRelationship] = (),
        patterns: Sequence[PatternMatch] = (),
    ) -> List[CodeSection]:
        """All candidates in emission order: frames, functions, classes, usage, imports, patterns."""
        self.clear()
        sections: List[CodeSection] = []
        sections.extend(self.stack_frame_sections(trace_contexts))
        sections.extend(self.function_sections(functions))
        sections.extend(self.class_sections(classes))
        for file_path in files_likely_involved:
            sections.extend(self.usage_sections(file_path, signals))
        sections.extend(self.import_sections(relationships))
        sections.extend(self.pattern_sections(patterns))
        self.clear()

        logger.info(
            f"Extracted {len(sections)} candidate section(s)",
            extra={"sections": len(sections)},
        )
        return sections
