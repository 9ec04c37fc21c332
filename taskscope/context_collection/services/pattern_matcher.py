"""
Code Pattern Matcher

Finds function and class definitions by name and code blocks that look like
a given piece of text. This is a heuristic index, not a semantic analyzer:
lookups can miss definitions or return false positives, and callers must
tolerate empty results.

Definition extraction is pluggable per file type:
- RegexDefinitionExtractor: JS/TS/Java (and a Python regex fallback)
- PythonAstDefinitionExtractor: Python via the stdlib ast module
"""

import ast
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from ..config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_EXTENSIONS
from .path_security import is_excluded_path, is_sensitive_file

logger = logging.getLogger(__name__)

# Traversal limits
MAX_TRAVERSAL_DEPTH = 10
DEFAULT_MAX_FILE_SIZE = 100_000  # bytes

# Directory names always skipped during traversal (exact name match)
TRAVERSAL_SKIP_DIRS = frozenset([
    "__pycache__", ".venv", "venv", "target", "bin", "obj", ".mypy_cache", ".pytest_cache",
])

# Similar-pattern search
MIN_PATTERN_SIMILARITY = 0.3
MAX_PATTERN_RESULTS = 50
EXACT_MATCH_THRESHOLD = 0.9
STRUCTURAL_MATCH_THRESHOLD = 0.6
PATTERN_CONTEXT_LINES = 2

# Lines assumed for a definition whose end cannot be found
FALLBACK_DEFINITION_LINES = 10

JS_EXTENSIONS = (".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs")
JAVA_EXTENSIONS = (".java",)
PYTHON_EXTENSIONS = (".py",)


# ============================================================================
# DATA CLASSES
# ============================================================================


@dataclass
class FunctionMatch:
    """A function or method definition found in a file."""

    name: str
    file_path: str
    start_line: int
    end_line: int
    signature: str
    parameters: List[str] = field(default_factory=list)
    return_type: Optional[str] = None
    is_async: bool = False
    is_method: bool = False
    class_name: Optional[str] = None
    accessibility: Optional[str] = None  # public, private, protected
    relevance_score: float = 0.5


@dataclass
class ClassMatch:
    """A class or interface definition with its members."""

    name: str
    file_path: str
    start_line: int
    end_line: int
    extends_class: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    methods: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    is_abstract: bool = False
    is_interface: bool = False
    relevance_score: float = 0.5


@dataclass
class PatternMatch:
    """A code block textually similar to a searched pattern."""

    pattern: str
    file_path: str
    start_line: int
    end_line: int
    similarity: float
    context: List[str] = field(default_factory=list)
    match_type: str = "semantic"  # exact, structural, semantic


# ============================================================================
# RELEVANCE HEURISTICS
# ============================================================================


def function_relevance(name: str, has_params: bool, is_async: bool, has_docs: bool) -> float:
    score = 0.5
    if len(name) > 3:
        score += 0.1
    if re.match(r"^[a-z][a-z0-9]*([A-Z][a-z0-9]*)*$", name):
        score += 0.1
    if has_params:
        score += 0.2
    if is_async:
        score += 0.1
    if has_docs:
        score += 0.1
    return min(1.0, round(score, 4))


def class_relevance(name: str, extends: bool, implements: bool, is_abstract: bool, has_docs: bool) -> float:
    score = 0.5
    if re.match(r"^[A-Z][a-z0-9]*([A-Z][a-z0-9]*)*$", name):
        score += 0.2
    if extends:
        score += 0.1
    if implements:
        score += 0.1
    if is_abstract:
        score += 0.1
    if has_docs:
        score += 0.1
    return min(1.0, round(score, 4))


def _line_of(content: str, position: int) -> int:
    return content.count("\n", 0, position) + 1


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw or not raw.strip():
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def find_block_end(lines: Sequence[str], start_line: int) -> int:
    """
    Line where the brace block opened at or after start_line closes.

    Falls back to start_line + 10 when no balanced block is found.
    """
    depth = 0
    opened = False
    for index in range(start_line - 1, len(lines)):
        for char in lines[index]:
            if char == "{":
                depth += 1
                opened = True
            elif char == "}":
                depth -= 1
                if opened and depth == 0:
                    return index + 1
    return start_line + FALLBACK_DEFINITION_LINES


# ============================================================================
# DEFINITION EXTRACTORS
# ============================================================================


class DefinitionExtractor(ABC):
    """Finds function and class definitions in the source of one file."""

    extensions: Tuple[str, ...] = ()

    def supports(self, extension: str) -> bool:
        return extension.lower() in self.extensions

    @abstractmethod
    def extract_functions(self, content: str, file_path: str, name: Optional[str] = None) -> List[FunctionMatch]:
        pass

    @abstractmethod
    def extract_classes(self, content: str, file_path: str, name: Optional[str] = None) -> List[ClassMatch]:
        pass


@dataclass(frozen=True)
class _FunctionPattern:
    regex: re.Pattern
    name_group: int
    params_group: Optional[int] = None
    return_group: Optional[int] = None
    access_group: Optional[int] = None
    detect_async: bool = False
    is_method: bool = False


@dataclass(frozen=True)
class _ClassPattern:
    regex: re.Pattern
    name_group: int
    extends_group: Optional[int] = None
    implements_group: Optional[int] = None
    detect_abstract: bool = False
    is_interface: bool = False


_JS_FUNCTION_PATTERNS = (
    _FunctionPattern(
        re.compile(r"(?:^|\s)(async\s+)?function\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\(([^)]*)\)(?:\s*:\s*([^{]+))?", re.M),
        name_group=2, params_group=3, return_group=4, detect_async=True,
    ),
    _FunctionPattern(
        re.compile(r"(?:^|\s)(?:const|let|var)\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*=\s*(?:async\s+)?\(([^)]*)\)\s*=>", re.M),
        name_group=1, params_group=2, detect_async=True,
    ),
    _FunctionPattern(
        re.compile(
            r"(?:^|\s)(public|private|protected)?\s*(async\s+)?([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\(([^)]*)\)"
            r"(?:\s*:\s*([^{]+))?\s*{",
            re.M,
        ),
        name_group=3, params_group=4, return_group=5, access_group=1, detect_async=True, is_method=True,
    ),
)

_PYTHON_FUNCTION_PATTERNS = (
    _FunctionPattern(
        re.compile(r"(?:^|\s)(async\s+)?def\s+([a-zA-Z_][a-zA-Z0-9_]*)\s*\(([^)]*)\)(?:\s*->\s*([^:]+))?:", re.M),
        name_group=2, params_group=3, return_group=4, detect_async=True,
    ),
)

_JAVA_FUNCTION_PATTERNS = (
    _FunctionPattern(
        re.compile(
            r"(?:^|\s)(public|private|protected)?\s*(static\s+)?(async\s+)?([a-zA-Z_$][a-zA-Z0-9_$<>\[\]]*)?"
            r"\s+([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\(([^)]*)\)",
            re.M,
        ),
        name_group=5, params_group=6, return_group=4, access_group=1, is_method=True,
    ),
)

_JS_CLASS_PATTERNS = (
    _ClassPattern(
        re.compile(
            r"(?:^|\s)(abstract\s+)?class\s+([a-zA-Z_$][a-zA-Z0-9_$]*)(?:\s+extends\s+([a-zA-Z_$][a-zA-Z0-9_$.]*))?"
            r"(?:\s+implements\s+([^{]+))?",
            re.M,
        ),
        name_group=2, extends_group=3, implements_group=4, detect_abstract=True,
    ),
    _ClassPattern(
        re.compile(r"(?:^|\s)interface\s+([a-zA-Z_$][a-zA-Z0-9_$]*)(?:\s+extends\s+([^{]+))?", re.M),
        name_group=1, extends_group=2, is_interface=True,
    ),
)

_PYTHON_CLASS_PATTERNS = (
    _ClassPattern(
        re.compile(r"(?:^|\s)class\s+([a-zA-Z_][a-zA-Z0-9_]*)(?:\s*\(\s*([^)]*)\s*\))?:", re.M),
        name_group=1, extends_group=2,
    ),
)

_JAVA_CLASS_PATTERNS = (
    _ClassPattern(
        re.compile(
            r"(?:^|\s)(public\s+)?(abstract\s+)?(final\s+)?class\s+([a-zA-Z_$][a-zA-Z0-9_$]*)"
            r"(?:\s+extends\s+([a-zA-Z_$][a-zA-Z0-9_$]*))?(?:\s+implements\s+([^{]+))?",
            re.M,
        ),
        name_group=4, extends_group=5, implements_group=6, detect_abstract=True,
    ),
    _ClassPattern(
        re.compile(r"(?:^|\s)(public\s+)?interface\s+([a-zA-Z_$][a-zA-Z0-9_$]*)(?:\s+extends\s+([^{]+))?", re.M),
        name_group=2, extends_group=3, is_interface=True,
    ),
)

_MEMBER_METHOD_PATTERN = re.compile(
    r"(?:^|\s)(public|private|protected)?\s*(async\s+)?([a-zA-Z_$][a-zA-Z0-9_$]*)\s*\([^)]*\)\s*{", re.M
)
_MEMBER_PROPERTY_PATTERN = re.compile(
    r"(?:^|\s)(public|private|protected)?\s+(readonly\s+)?([a-zA-Z_$][a-zA-Z0-9_$]*)\s*[:=]", re.M
)
# Control-flow keywords the method pattern would otherwise report as members
_NOT_MEMBER_NAMES = frozenset(["if", "for", "while", "switch", "catch", "function", "return", "constructor"])


class RegexDefinitionExtractor(DefinitionExtractor):
    """Regex-based extraction for brace languages, with brace-counted ends."""

    extensions = JS_EXTENSIONS + JAVA_EXTENSIONS + PYTHON_EXTENSIONS

    def _function_patterns(self, extension: str) -> Tuple[_FunctionPattern, ...]:
        if extension in JS_EXTENSIONS:
            return _JS_FUNCTION_PATTERNS
        if extension in JAVA_EXTENSIONS:
            return _JAVA_FUNCTION_PATTERNS
        if extension in PYTHON_EXTENSIONS:
            return _PYTHON_FUNCTION_PATTERNS
        return ()

    def _class_patterns(self, extension: str) -> Tuple[_ClassPattern, ...]:
        if extension in JS_EXTENSIONS:
            return _JS_CLASS_PATTERNS
        if extension in JAVA_EXTENSIONS:
            return _JAVA_CLASS_PATTERNS
        if extension in PYTHON_EXTENSIONS:
            return _PYTHON_CLASS_PATTERNS
        return ()

    def extract_functions(self, content: str, file_path: str, name: Optional[str] = None) -> List[FunctionMatch]:
        extension = Path(file_path).suffix.lower()
        lines = content.split("\n")
        has_docs = "/**" in content and "*/" in content
        matches: List[FunctionMatch] = []
        seen = set()

        for pattern in self._function_patterns(extension):
            for match in pattern.regex.finditer(content):
                function_name = match.group(pattern.name_group)
                if not function_name or (name and function_name != name):
                    continue

                start_line = _line_of(content, match.start(pattern.name_group))
                if (function_name, start_line) in seen:
                    continue
                seen.add((function_name, start_line))

                signature = match.group(0).strip()
                params = _split_list(match.group(pattern.params_group)) if pattern.params_group else []
                return_type = match.group(pattern.return_group) if pattern.return_group else None
                is_async = pattern.detect_async and bool(re.search(r"\basync\b", match.group(0)))

                matches.append(FunctionMatch(
                    name=function_name,
                    file_path=file_path,
                    start_line=start_line,
                    end_line=find_block_end(lines, start_line),
                    signature=signature,
                    parameters=params,
                    return_type=return_type.strip() if return_type else None,
                    is_async=is_async,
                    is_method=pattern.is_method,
                    accessibility=match.group(pattern.access_group) if pattern.access_group else None,
                    relevance_score=function_relevance(function_name, bool(params), is_async, has_docs),
                ))
        return matches

    def extract_classes(self, content: str, file_path: str, name: Optional[str] = None) -> List[ClassMatch]:
        extension = Path(file_path).suffix.lower()
        lines = content.split("\n")
        has_docs = "/**" in content and "*/" in content
        matches: List[ClassMatch] = []

        for pattern in self._class_patterns(extension):
            for match in pattern.regex.finditer(content):
                class_name = match.group(pattern.name_group)
                if not class_name or (name and class_name != name):
                    continue

                start_line = _line_of(content, match.start(pattern.name_group))
                end_line = find_block_end(lines, start_line)
                body = "\n".join(lines[start_line - 1:end_line])
                extends = match.group(pattern.extends_group) if pattern.extends_group else None
                implements = _split_list(match.group(pattern.implements_group)) if pattern.implements_group else []
                is_abstract = pattern.detect_abstract and bool(re.search(r"\babstract\b", match.group(0)))

                matches.append(ClassMatch(
                    name=class_name,
                    file_path=file_path,
                    start_line=start_line,
                    end_line=end_line,
                    extends_class=extends.strip() if extends else None,
                    implements=implements,
                    methods=self._member_methods(body),
                    properties=self._member_properties(body),
                    is_abstract=is_abstract,
                    is_interface=pattern.is_interface,
                    relevance_score=class_relevance(class_name, bool(extends), bool(implements), is_abstract, has_docs),
                ))
        return matches

    @staticmethod
    def _member_methods(body: str) -> List[str]:
        names = [m.group(3) for m in _MEMBER_METHOD_PATTERN.finditer(body)]
        return list(dict.fromkeys(n for n in names if n not in _NOT_MEMBER_NAMES))

    @staticmethod
    def _member_properties(body: str) -> List[str]:
        names = [m.group(3) for m in _MEMBER_PROPERTY_PATTERN.finditer(body)]
        return list(dict.fromkeys(names))


class PythonAstDefinitionExtractor(DefinitionExtractor):
    """
    Python definitions via ast, with exact end lines.

    Files that do not parse fall back to the regex extractor.
    """

    extensions = PYTHON_EXTENSIONS

    def __init__(self, fallback: Optional[DefinitionExtractor] = None):
        self.fallback = fallback or RegexDefinitionExtractor()

    def _parse(self, content: str, file_path: str) -> Optional[ast.Module]:
        try:
            return ast.parse(content, filename=file_path)
        except (SyntaxError, ValueError) as e:
            logger.debug(f"Falling back to regex definitions for {file_path}: {e}")
            return None

    def extract_functions(self, content: str, file_path: str, name: Optional[str] = None) -> List[FunctionMatch]:
        tree = self._parse(content, file_path)
        if tree is None:
            return self.fallback.extract_functions(content, file_path, name)

        lines = content.split("\n")
        matches = []
        for owner, node in _walk_definitions(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            if name and node.name != name:
                continue

            params = [a.arg for a in node.args.posonlyargs + node.args.args + node.args.kwonlyargs]
            if node.args.vararg:
                params.append("*" + node.args.vararg.arg)
            if node.args.kwarg:
                params.append("**" + node.args.kwarg.arg)
            if owner is not None and params and params[0] in ("self", "cls"):
                params = params[1:]

            is_async = isinstance(node, ast.AsyncFunctionDef)
            matches.append(FunctionMatch(
                name=node.name,
                file_path=file_path,
                start_line=node.lineno,
                end_line=node.end_lineno or node.lineno,
                signature=lines[node.lineno - 1].strip() if node.lineno <= len(lines) else node.name,
                parameters=params,
                return_type=ast.unparse(node.returns) if node.returns is not None else None,
                is_async=is_async,
                is_method=owner is not None,
                class_name=owner.name if owner is not None else None,
                accessibility="private" if node.name.startswith("_") else "public",
                relevance_score=function_relevance(
                    node.name, bool(params), is_async, ast.get_docstring(node) is not None
                ),
            ))
        return matches

    def extract_classes(self, content: str, file_path: str, name: Optional[str] = None) -> List[ClassMatch]:
        tree = self._parse(content, file_path)
        if tree is None:
            return self.fallback.extract_classes(content, file_path, name)

        matches = []
        for _, node in _walk_definitions(tree):
            if not isinstance(node, ast.ClassDef):
                continue
            if name and node.name != name:
                continue

            bases = [ast.unparse(b) for b in node.bases]
            methods = [
                n.name for n in node.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))
            ]
            is_abstract = any(b in ("ABC", "abc.ABC") for b in bases) or any(
                _has_decorator(n, "abstractmethod")
                for n in node.body
                if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))
            )
            extends = bases[0] if bases else None
            implements = bases[1:]

            matches.append(ClassMatch(
                name=node.name,
                file_path=file_path,
                start_line=node.lineno,
                end_line=node.end_lineno or node.lineno,
                extends_class=extends,
                implements=implements,
                methods=methods,
                properties=_class_properties(node),
                is_abstract=is_abstract,
                is_interface=any(b in ("Protocol", "typing.Protocol") for b in bases),
                relevance_score=class_relevance(
                    node.name, bool(extends), bool(implements), is_abstract, ast.get_docstring(node) is not None
                ),
            ))
        return matches


def _walk_definitions(tree: ast.AST) -> Iterator[Tuple[Optional[ast.ClassDef], ast.AST]]:
    """Yield (enclosing class or None, node) for every def/class in the tree."""
    stack: List[Tuple[Optional[ast.ClassDef], ast.AST]] = [(None, tree)]
    while stack:
        owner, node = stack.pop()
        for child in ast.iter_child_nodes(node):
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                yield owner, child
            child_owner = child if isinstance(child, ast.ClassDef) else (
                None if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)) else owner
            )
            stack.append((child_owner, child))


def _has_decorator(node: ast.AST, decorator: str) -> bool:
    for dec in getattr(node, "decorator_list", []):
        target = dec.func if isinstance(dec, ast.Call) else dec
        if ast.unparse(target).split(".")[-1] == decorator:
            return True
    return False


def _class_properties(node: ast.ClassDef) -> List[str]:
    """Class-level assignments plus self.<attr> assignments in __init__."""
    names = []
    for stmt in node.body:
        if isinstance(stmt, ast.Assign):
            names.extend(t.id for t in stmt.targets if isinstance(t, ast.Name))
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            names.append(stmt.target.id)
        elif isinstance(stmt, ast.FunctionDef) and stmt.name == "__init__":
            for sub in ast.walk(stmt):
                targets = sub.targets if isinstance(sub, ast.Assign) else (
                    [sub.target] if isinstance(sub, ast.AnnAssign) else []
                )
                for target in targets:
                    if (
                        isinstance(target, ast.Attribute)
                        and isinstance(target.value, ast.Name)
                        and target.value.id == "self"
                    ):
                        names.append(target.attr)
    return list(dict.fromkeys(names))


# ============================================================================
# TRAVERSAL
# ============================================================================


def iter_source_files(
    root: Path,
    include_extensions: Iterable[str],
    exclude_patterns: Iterable[str] = (),
    max_depth: int = MAX_TRAVERSAL_DEPTH,
    max_file_size: Optional[int] = None,
) -> Iterator[Path]:
    """
    Walk the root and yield readable source files.

    Skips excluded directories (substring of the root-relative path),
    well-known tool/venv directories, sensitive files, unlisted extensions
    and files larger than max_file_size. Symlinks are not followed.
    """
    extensions = {e.lower() for e in include_extensions}
    exclude_patterns = list(exclude_patterns)

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        relative_dir = current.relative_to(root)
        depth = 0 if str(relative_dir) == "." else len(relative_dir.parts)

        dirnames[:] = sorted(
            d for d in dirnames
            if d not in TRAVERSAL_SKIP_DIRS
            and not (current / d).is_symlink()
            and is_excluded_path("/" + (relative_dir / d).as_posix(), exclude_patterns) is None
        )
        if depth >= max_depth:
            dirnames[:] = []

        for filename in sorted(filenames):
            path = current / filename
            if path.suffix.lower() not in extensions or path.is_symlink():
                continue
            relative = (relative_dir / filename).as_posix()
            if is_excluded_path("/" + relative, exclude_patterns) is not None:
                continue
            if is_sensitive_file(relative):
                continue
            if max_file_size is not None:
                try:
                    if path.stat().st_size > max_file_size:
                        logger.debug(f"Skipping large file: {relative}")
                        continue
                except OSError as e:
                    logger.debug(f"Could not stat {relative}: {e}")
                    continue
            yield path


def _read_source(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.debug(f"Could not read file {path}: {e}")
        return None


# ============================================================================
# MATCHER
# ============================================================================


class CodePatternMatcher:
    """
    Definition lookup and similar-pattern search over a code root.

    Responsibilities:
    - Traverse the root (depth, exclude, extension and size filters)
    - Route each file to the first DefinitionExtractor supporting it
    - Rank definitions and similar blocks

    Usage:
        matcher = CodePatternMatcher(Path("/repo"))
        matcher.find_function_definitions("processUser")
        matcher.find_similar_patterns("if (!user) throw new Error('missing')")
    """

    def __init__(
        self,
        root: Path,
        include_extensions: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_depth: int = MAX_TRAVERSAL_DEPTH,
        extractors: Optional[Sequence[DefinitionExtractor]] = None,
    ):
        self.root = Path(root).resolve()
        self.include_extensions = list(include_extensions or DEFAULT_INCLUDE_EXTENSIONS)
        self.exclude_patterns = list(exclude_patterns if exclude_patterns is not None else DEFAULT_EXCLUDE_PATTERNS)
        self.max_file_size = max_file_size
        self.max_depth = max_depth
        self.extractors = list(extractors) if extractors else [
            PythonAstDefinitionExtractor(),
            RegexDefinitionExtractor(),
        ]

    def list_files(self) -> List[Path]:
        return list(iter_source_files(
            self.root,
            self.include_extensions,
            self.exclude_patterns,
            max_depth=self.max_depth,
            max_file_size=self.max_file_size,
        ))

    def _extractor_for(self, path: Path) -> Optional[DefinitionExtractor]:
        extension = path.suffix.lower()
        for extractor in self.extractors:
            if extractor.supports(extension):
                return extractor
        return None

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def find_function_definitions(self, name: Optional[str] = None) -> List[FunctionMatch]:
        """Functions named exactly `name` (all functions if None), best first."""
        matches: List[FunctionMatch] = []
        for path in self.list_files():
            extractor = self._extractor_for(path)
            content = _read_source(path) if extractor else None
            if content is None:
                continue
            if name and name not in content:
                continue
            matches.extend(extractor.extract_functions(content, self._relative(path), name))

        matches.sort(key=lambda m: m.relevance_score, reverse=True)
        logger.debug(f"Function lookup '{name}': {len(matches)} match(es)")
        return matches

    def find_class_definitions(self, name: Optional[str] = None) -> List[ClassMatch]:
        """Classes named exactly `name` (all classes if None), best first."""
        matches: List[ClassMatch] = []
        for path in self.list_files():
            extractor = self._extractor_for(path)
            content = _read_source(path) if extractor else None
            if content is None:
                continue
            if name and name not in content:
                continue
            matches.extend(extractor.extract_classes(content, self._relative(path), name))

        matches.sort(key=lambda m: m.relevance_score, reverse=True)
        logger.debug(f"Class lookup '{name}': {len(matches)} match(es)")
        return matches

    def find_similar_patterns(
        self,
        target: str,
        min_similarity: float = MIN_PATTERN_SIMILARITY,
        max_results: int = MAX_PATTERN_RESULTS,
    ) -> List[PatternMatch]:
        """
        Code blocks whose normalized text resembles the target.

        Blocks are brace-delimited (def/class bodies for Python); similarity is
        the difflib ratio of the normalized texts.
        """
        normalized_target = normalize_pattern(target)
        if not normalized_target:
            return []

        results: List[PatternMatch] = []
        for path in self.list_files():
            content = _read_source(path)
            if content is None:
                continue
            lines = content.split("\n")
            blocks = python_blocks(content) if path.suffix.lower() in PYTHON_EXTENSIONS else brace_blocks(lines)

            for start_line, end_line in blocks:
                block_text = normalize_pattern("\n".join(lines[start_line - 1:end_line]))
                similarity = pattern_similarity(normalized_target, block_text, min_similarity)
                if similarity < min_similarity:
                    continue
                results.append(PatternMatch(
                    pattern=normalized_target,
                    file_path=self._relative(path),
                    start_line=start_line,
                    end_line=end_line,
                    similarity=round(similarity, 4),
                    context=block_context(lines, start_line, end_line),
                    match_type=match_type_for(similarity),
                ))

        results.sort(key=lambda m: m.similarity, reverse=True)
        return results[:max_results]


def normalize_pattern(text: str) -> str:
    """Strip comments, collapse whitespace and lower-case."""
    text = re.sub(r"/\*.*?\*/", " ", text, flags=re.DOTALL)
    text = re.sub(r"(?m)//.*$", "", text)
    text = re.sub(r"(?m)^\s*#.*$", "", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def pattern_similarity(a: str, b: str, floor: float = 0.0) -> float:
    if not a and not b:
        return 1.0
    matcher = SequenceMatcher(None, a, b)
    # Cheap upper bounds first; ratio() is quadratic on long blocks
    if matcher.real_quick_ratio() < floor or matcher.quick_ratio() < floor:
        return 0.0
    return matcher.ratio()


def match_type_for(similarity: float) -> str:
    if similarity > EXACT_MATCH_THRESHOLD:
        return "exact"
    if similarity > STRUCTURAL_MATCH_THRESHOLD:
        return "structural"
    return "semantic"


def brace_blocks(lines: Sequence[str]) -> List[Tuple[int, int]]:
    """Top-level brace-delimited blocks as (start_line, end_line), 1-based."""
    blocks = []
    depth = 0
    block_start = None
    for index, line in enumerate(lines):
        for char in line:
            if char == "{":
                if block_start is None:
                    block_start = index
                depth += 1
            elif char == "}" and block_start is not None:
                depth -= 1
                if depth == 0:
                    blocks.append((block_start + 1, index + 1))
                    block_start = None
    return blocks


def python_blocks(content: str) -> List[Tuple[int, int]]:
    """Every def/class body as (start_line, end_line); nothing if unparsable."""
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError):
        return []
    return sorted(
        (node.lineno, node.end_lineno or node.lineno)
        for _, node in _walk_definitions(tree)
    )


def block_context(lines: Sequence[str], start_line: int, end_line: int) -> List[str]:
    before = lines[max(0, start_line - 1 - PATTERN_CONTEXT_LINES):start_line - 1]
    after = lines[end_line:end_line + PATTERN_CONTEXT_LINES]
    return list(before) + list(after)
