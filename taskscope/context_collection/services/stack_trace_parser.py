"""
Stack Trace Parser

Detects error traces embedded in task text and parses them into a dialect,
an error type and ordered frames, so bug tasks can pull the code around the
failing call sites.

Supported dialects: javascript/typescript (V8, browser, webpack), python,
java, csharp, go, rust, plus a generic "file.ext:line" fallback.
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Dict, List, Optional, Pattern, Tuple

from ..models import ParsedStackTrace, StackTraceContext, StackTraceFrame

logger = logging.getLogger(__name__)

# Confidence contributed by a recognised error line and by each parsed frame
ERROR_LINE_CONFIDENCE = 0.3
FRAME_CONFIDENCE = 0.1
MIN_VALID_CONFIDENCE = 0.3
FALLBACK_CONFIDENCE = 0.3

# Lines collected around a frame, by priority
CONTEXT_LINES_BY_PRIORITY: Dict[str, int] = {
    "high": 10,
    "medium": 5,
    "low": 3,
}

# How many preceding lines may hold the error message of a trace
ERROR_LOOKBACK_LINES = 3


@dataclass(frozen=True)
class TraceDialect:
    """Frame and error-line syntax of one language's traces."""

    name: str
    frame_patterns: Tuple[Pattern, ...]
    error_pattern: Optional[Pattern]
    extensions: Tuple[str, ...]
    confidence: float


# Tried in order; the first dialect producing a valid trace wins.
# Frame patterns use named groups: function, file, line, column, cls, method.
TRACE_DIALECTS: Tuple[TraceDialect, ...] = (
    TraceDialect(
        name="javascript",
        frame_patterns=(
            # at functionName (file.js:line:col) / at file.js:line:col
            re.compile(r"^\s*at\s+(?:(?P<function>.+?)\s+\()?(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)\)?$"),
            # functionName@file.js:line:col
            re.compile(r"^\s*(?P<function>.+?)@(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)$"),
            # at Object.functionName (webpack:///./src/file.js:line:col)
            re.compile(
                r"^\s*at\s+(?:Object\.)?(?P<function>.+?)\s+\(webpack:///\./(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)\)"
            ),
            # file.js:line:col
            re.compile(r"^\s*(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)$"),
        ),
        error_pattern=re.compile(r"^(\w+(?:Error|Exception)?):\s*(.+)$"),
        extensions=(".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"),
        confidence=0.9,
    ),
    TraceDialect(
        name="python",
        frame_patterns=(
            re.compile(r'^\s*File\s+"(?P<file>.+?)",\s+line\s+(?P<line>\d+),\s+in\s+(?P<function>.+)$'),
            re.compile(r'^\s*File\s+"(?P<file>.+?)",\s+line\s+(?P<line>\d+)$'),
        ),
        error_pattern=re.compile(r"^((?:\w+\.)*\w+(?:Error|Exception|Interrupt|Exit)):\s*(.*)$"),
        extensions=(".py", ".pyw"),
        confidence=0.95,
    ),
    TraceDialect(
        name="java",
        frame_patterns=(
            re.compile(
                r"^\s*at\s+(?P<cls>[a-zA-Z_$][a-zA-Z0-9_$.]*?)\.(?P<method>[a-zA-Z_$<][a-zA-Z0-9_$>]*?)"
                r"\((?P<file>[^():]+?):(?P<line>\d+)\)$"
            ),
            re.compile(
                r"^\s*at\s+(?P<cls>[a-zA-Z_$][a-zA-Z0-9_$.]*?)\.(?P<method>[a-zA-Z_$<][a-zA-Z0-9_$>]*?)"
                r"\((?:Unknown Source|Native Method)\)$"
            ),
        ),
        error_pattern=re.compile(r"^((?:[\w$]+\.)*\w+(?:Exception|Error)):\s*(.+)$"),
        extensions=(".java",),
        confidence=0.9,
    ),
    TraceDialect(
        name="csharp",
        frame_patterns=(
            re.compile(
                r"^\s*at\s+(?P<cls>[a-zA-Z_][a-zA-Z0-9_.]*?)\.(?P<method>[a-zA-Z_][a-zA-Z0-9_]*?)\([^)]*\)"
                r"\s+in\s+(?P<file>.+?):line\s+(?P<line>\d+)$"
            ),
            re.compile(r"^\s*at\s+(?P<cls>[a-zA-Z_][a-zA-Z0-9_.]*?)\.(?P<method>[a-zA-Z_][a-zA-Z0-9_]*?)\([^)]*\)$"),
        ),
        error_pattern=re.compile(r"^(System\.\w+(?:Exception)?|\w+(?:Exception|Error)):\s*(.+)$"),
        extensions=(".cs",),
        confidence=0.85,
    ),
    TraceDialect(
        name="go",
        frame_patterns=(
            # main.handler() /path/to/file.go:123 +0x456
            re.compile(r"^\s*(?P<function>.+?)\(\)\s+(?P<file>.+?):(?P<line>\d+)\s+\+0x[0-9a-f]+$"),
            # github.com/user/repo/pkg.handler() /path/to/file.go:123
            re.compile(r"^\s*(?P<function>.+?\..+?)\(\)\s+(?P<file>.+?):(?P<line>\d+)$"),
            # /path/to/file.go:123 +0x456 (second line of a goroutine frame)
            re.compile(r"^\s*(?P<file>\S+\.go):(?P<line>\d+)(?:\s+\+0x[0-9a-f]+)?$"),
        ),
        error_pattern=re.compile(r"^(panic):\s*(.+)$"),
        extensions=(".go",),
        confidence=0.8,
    ),
    TraceDialect(
        name="rust",
        frame_patterns=(
            re.compile(r"^\s*at\s+(?P<function>.+?::.+?)\s+\((?P<file>.+?):(?P<line>\d+):(?P<column>\d+)\)$"),
            re.compile(r"^\s*(?P<function>.+?::.+?)\s+at\s+(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)$"),
            re.compile(r"^\s*at\s+(?P<file>\S+\.rs):(?P<line>\d+):(?P<column>\d+)$"),
        ),
        error_pattern=re.compile(r"^thread\s+'[^']+'\s+(panicked)\s+at\s+(.+)$"),
        extensions=(".rs",),
        confidence=0.8,
    ),
)

# Extension -> dialect, used to keep a frame from being claimed by the wrong dialect
_EXTENSION_DIALECT: Dict[str, str] = {
    ext: dialect.name for dialect in TRACE_DIALECTS for ext in dialect.extensions
}

FALLBACK_FRAME_PATTERN = re.compile(r"([a-zA-Z0-9_\-/.\\]+\.(?:js|ts|py|java|cs|go|rs|jsx|tsx)):(\d+)")

TRACE_LINE_INDICATORS: Tuple[Pattern, ...] = (
    re.compile(r"^\s*at\s+"),
    re.compile(r'^\s*File\s+"'),
    re.compile(r"^\s*Traceback \(most recent call last\)"),
    re.compile(r"^\s*\w+\.\w+\("),
    re.compile(r"\.(?:js|ts|py|java|cs|go|rs|jsx|tsx):\d+"),
    re.compile(r"^\s*\d+\.\s+"),
    re.compile(r"^thread\s+'[^']+'\s+panicked"),
)

REGULAR_CODE_INDICATORS: Tuple[Pattern, ...] = (
    re.compile(r"^(function|class|def|public|private|if|for|while|return)\b"),
    re.compile(r"^(import|from|#include|using)\b"),
    re.compile(r"^\s*//|^\s*/\*|^\s*#"),
    re.compile(r"^\s*[{}]\s*$"),
    re.compile(r"^\s*[a-zA-Z_$][a-zA-Z0-9_$]*\s*[=:]"),
)

ERROR_LINE_PATTERN = re.compile(r"^(?:[\w$]+\.)*\w*(?:Error|Exception)\b.*:|^panic:")
PYTHON_FRAME_PATTERN = re.compile(r'^\s*File\s+"')

# Frames from runtimes and installed packages, per dialect
SYSTEM_FILE_PATTERNS: Dict[str, Tuple[Pattern, ...]] = {
    "javascript": (
        re.compile(r"node_modules"),
        re.compile(r"internal/.*\.js$"),
        re.compile(r"^node:"),
    ),
    "python": (
        re.compile(r"/usr/lib/python"),
        re.compile(r"site-packages"),
        re.compile(r"<frozen "),
    ),
    "java": (
        re.compile(r"^java\."),
        re.compile(r"^javax\."),
        re.compile(r"^sun\."),
        re.compile(r"^com\.sun\."),
    ),
    "csharp": (
        re.compile(r"^System\."),
        re.compile(r"^Microsoft\."),
    ),
}


class StackTraceParser:
    """
    Parses error traces out of free text.

    Usage:
        parser = StackTraceParser()
        if parser.contains_stack_trace(text):
            for trace in parser.extract_stack_traces(text):
                contexts = parser.extract_stack_trace_contexts(trace)
    """

    def __init__(self, dialects: Tuple[TraceDialect, ...] = TRACE_DIALECTS):
        self.dialects = dialects

    def contains_stack_trace(self, text: Optional[str]) -> bool:
        """Cheap check: at least two lines look like trace lines."""
        if not text:
            return False

        trace_lines = 0
        for line in text.split("\n"):
            if self._looks_like_trace_line(line):
                trace_lines += 1
                if trace_lines >= 2:
                    return True
        return False

    def parse_stack_trace(self, text: Optional[str]) -> ParsedStackTrace:
        """Parse one trace, trying each dialect before the generic fallback."""
        if not text:
            return ParsedStackTrace(language="unknown")

        lines = [line.strip() for line in text.split("\n") if line.strip()]

        for dialect in self.dialects:
            result = self._parse_with_dialect(lines, dialect)
            if result.is_valid and result.frames:
                return result

        fallback_frames = self._extract_fallback_frames(lines)
        return ParsedStackTrace(
            language="unknown",
            frames=fallback_frames,
            is_valid=bool(fallback_frames),
            confidence=FALLBACK_CONFIDENCE if fallback_frames else 0.0,
        )

    def extract_stack_traces(self, text: Optional[str]) -> List[ParsedStackTrace]:
        """
        Find and parse every trace in a larger block of text.

        Consecutive trace-like lines form a segment, together with an error
        message found just above it and any non-code continuation lines
        (Python source echoes and the closing exception line included).
        Only valid traces are returned.
        """
        if not text:
            return []

        traces: List[ParsedStackTrace] = []
        lines = text.split("\n")
        current: List[str] = []
        in_trace = False

        for index, line in enumerate(lines):
            if self._looks_like_trace_line(line):
                if not in_trace:
                    current = self._find_error_context(lines, index)
                    in_trace = True
                current.append(line)
            elif in_trace:
                if line.strip() and self._is_continuation(line, current):
                    current.append(line)
                else:
                    self._flush_segment(current, traces)
                    current = []
                    in_trace = False

        self._flush_segment(current, traces)
        return traces

    def extract_stack_trace_contexts(self, trace: ParsedStackTrace) -> List[StackTraceContext]:
        """Frames worth reading, with priority and line window, system frames skipped."""
        if not trace.is_valid or not trace.frames:
            return []

        contexts = []
        total = len(trace.frames)
        for index, frame in enumerate(trace.frames):
            if not frame.file_path or not frame.line_number:
                continue
            if self.is_system_file(frame.file_path, trace.language):
                continue

            priority = self.determine_priority(index, total)
            contexts.append(StackTraceContext(
                file_path=frame.file_path,
                line_number=frame.line_number,
                context_lines=CONTEXT_LINES_BY_PRIORITY[priority],
                priority=priority,
                function_name=frame.function_name or frame.method_name,
            ))
        return contexts

    @staticmethod
    def determine_priority(frame_index: int, total_frames: int) -> str:
        """Top frames are high, the first half medium, the rest low."""
        if frame_index < 2:
            return "high"
        if frame_index < math.ceil(total_frames / 2):
            return "medium"
        return "low"

    @staticmethod
    def is_system_file(file_path: str, language: str) -> bool:
        patterns = SYSTEM_FILE_PATTERNS.get(language, ())
        return any(p.search(file_path) for p in patterns)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_with_dialect(self, lines: List[str], dialect: TraceDialect) -> ParsedStackTrace:
        frames: List[StackTraceFrame] = []
        error_type = None
        error_message = None
        confidence = 0.0

        for line in lines:
            if error_type is None and dialect.error_pattern is not None:
                error_match = dialect.error_pattern.match(line)
                if error_match:
                    error_type = error_match.group(1)
                    error_message = error_match.group(2)
                    confidence += ERROR_LINE_CONFIDENCE
                    continue

            for pattern in dialect.frame_patterns:
                match = pattern.match(line)
                if not match:
                    continue
                frame = self._frame_from_match(match, dialect, line)
                if frame is not None:
                    frames.append(frame)
                    confidence += FRAME_CONFIDENCE
                    break

        return ParsedStackTrace(
            language=dialect.name,
            frames=frames,
            is_valid=bool(frames) and confidence > MIN_VALID_CONFIDENCE,
            confidence=min(1.0, confidence * dialect.confidence),
            error_type=error_type,
            error_message=error_message,
        )

    def _frame_from_match(self, match, dialect: TraceDialect, raw_line: str) -> Optional[StackTraceFrame]:
        groups = match.groupdict()
        file_path = groups.get("file")
        line = groups.get("line")
        if not file_path and not groups.get("cls"):
            return None

        # A frame pointing at another language's source belongs to that dialect
        if file_path:
            owner = _EXTENSION_DIALECT.get(PurePath(file_path).suffix.lower())
            if owner is not None and owner != dialect.name:
                return None

        column = groups.get("column")
        return StackTraceFrame(
            language=dialect.name,
            raw_line=raw_line,
            function_name=groups.get("function") or None,
            file_path=file_path or None,
            line_number=int(line) if line else None,
            column_number=int(column) if column else None,
            class_name=groups.get("cls") or None,
            method_name=groups.get("method") or None,
        )

    @staticmethod
    def _extract_fallback_frames(lines: List[str]) -> List[StackTraceFrame]:
        frames = []
        for line in lines:
            match = FALLBACK_FRAME_PATTERN.search(line)
            if match:
                frames.append(StackTraceFrame(
                    language="unknown",
                    raw_line=line,
                    file_path=match.group(1),
                    line_number=int(match.group(2)),
                ))
        return frames

    def _flush_segment(self, segment: List[str], traces: List[ParsedStackTrace]) -> None:
        if len(segment) < 2:
            return
        parsed = self.parse_stack_trace("\n".join(segment))
        if parsed.is_valid:
            traces.append(parsed)
        else:
            logger.debug(f"Discarded trace-like segment of {len(segment)} lines")

    @staticmethod
    def _looks_like_trace_line(line: str) -> bool:
        trimmed = line.strip()
        return any(p.search(trimmed) for p in TRACE_LINE_INDICATORS)

    @staticmethod
    def _looks_like_regular_code(line: str) -> bool:
        trimmed = line.strip()
        return any(p.search(trimmed) for p in REGULAR_CODE_INDICATORS)

    def _is_continuation(self, line: str, segment: List[str]) -> bool:
        if ERROR_LINE_PATTERN.match(line.strip()):
            return True
        # Python echoes the failing source line right under each frame
        if segment and PYTHON_FRAME_PATTERN.match(segment[-1]):
            return True
        return not self._looks_like_regular_code(line)

    @staticmethod
    def _find_error_context(lines: List[str], start_index: int) -> List[str]:
        context = []
        for i in range(max(0, start_index - ERROR_LOOKBACK_LINES), start_index):
            stripped = lines[i].strip()
            if stripped and ("Error" in stripped or "Exception" in stripped or "panic" in stripped):
                context.append(lines[i])
        return context
