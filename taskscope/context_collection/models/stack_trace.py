"""
Stack trace records.

Plain dataclasses produced by the stack trace parser and carried on the
collection result for bug tasks.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class StackTraceFrame:
    """One call-site entry within a parsed trace."""

    language: str
    raw_line: str
    function_name: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    class_name: Optional[str] = None
    method_name: Optional[str] = None


@dataclass
class ParsedStackTrace:
    """A trace with its dialect, error line and ordered frames."""

    language: str
    frames: List[StackTraceFrame] = field(default_factory=list)
    is_valid: bool = False
    confidence: float = 0.0  # 0-1 parse confidence
    error_type: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StackTraceContext:
    """A frame worth reading, with the window of lines to collect around it."""

    file_path: str
    line_number: int
    context_lines: int
    priority: str  # high, medium, low
    function_name: Optional[str] = None
