"""
Dependency Analyzer

Import/export extraction and a project-level dependency graph: which files
import which, entry points, leaf nodes, cycles, strongly-coupled clusters
and summary metrics.

JS/TS sources are scanned line by line with regexes (ES modules, CommonJS
require, dynamic import()); Python sources are parsed with ast.
All node keys are root-relative POSIX paths.
"""

import ast
import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import DEFAULT_EXCLUDE_PATTERNS
from .path_security import safe_resolve
from .pattern_matcher import DEFAULT_MAX_FILE_SIZE, MAX_TRAVERSAL_DEPTH, iter_source_files

logger = logging.getLogger(__name__)

DEFAULT_DEPENDENCY_EXTENSIONS = [".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs", ".py"]

# Edge strength
BASE_EDGE_STRENGTH = 0.5
TYPE_ONLY_FACTOR = 0.5
DYNAMIC_FACTOR = 0.7
PER_IMPORTED_NAME_BONUS = 0.1
MAX_IMPORTED_NAMES_BONUS = 0.3
DEFAULT_IMPORT_BONUS = 0.1

# Edges above this strength bind files into one cluster
CLUSTER_STRENGTH_THRESHOLD = 0.7

# Connections at which a file counts as fully coupled
RELATIONSHIP_SATURATION = 10
COUPLING_SATURATION = 10

MODULE_SYSTEM_SAMPLE_SIZE = 50
MIXED_SYSTEM_SHARE = 0.2

_IDENT = r"[a-zA-Z_$][a-zA-Z0-9_$]*"

ES_IMPORT_PATTERNS = (
    # import type { A } from 'm'
    re.compile(r"import\s+type\s*\{\s*([^}]+)\s*\}\s*from\s*['\"]([^'\"]+)['\"]"),
    # import type A from 'm'
    re.compile(rf"import\s+type\s+({_IDENT})\s+from\s*['\"]([^'\"]+)['\"]"),
    # import d, { a, b } from 'm'
    re.compile(rf"import\s+({_IDENT})\s*,\s*\{{\s*([^}}]+)\s*\}}\s*from\s*['\"]([^'\"]+)['\"]"),
    # import { a, b } from 'm'
    re.compile(r"import\s*\{\s*([^}]+)\s*\}\s*from\s*['\"]([^'\"]+)['\"]"),
    # import * as ns from 'm'
    re.compile(rf"import\s*\*\s*as\s+({_IDENT})\s+from\s*['\"]([^'\"]+)['\"]"),
    # import d from 'm'
    re.compile(rf"import\s+(?!type\s)({_IDENT})\s+from\s*['\"]([^'\"]+)['\"]"),
    # import 'm'
    re.compile(r"import\s*['\"]([^'\"]+)['\"]"),
)
REQUIRE_PATTERN = re.compile(
    rf"(?:const|let|var)\s+(?:\{{([^}}]+)\}}|({_IDENT}))?\s*=\s*require\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"
)
DYNAMIC_IMPORT_PATTERN = re.compile(r"import\s*\(\s*['\"]([^'\"]+)['\"]\s*\)")

RE_EXPORT_PATTERN = re.compile(r"export\s*\{\s*([^}]+)\s*\}\s*from\s*['\"]([^'\"]+)['\"]")
EXPORT_ALL_PATTERN = re.compile(r"export\s*\*\s*from\s*['\"]([^'\"]+)['\"]")
EXPORT_LIST_PATTERN = re.compile(r"export\s*\{\s*([^}]+)\s*\}")
EXPORT_DEFAULT_PATTERN = re.compile(r"export\s+default\s+")
EXPORT_DECLARATION_PATTERNS = (
    re.compile(r"export\s+(?:const|let|var)\s+([a-zA-Z_$][a-zA-Z0-9_$,\s]*)"),
    re.compile(rf"export\s+(?:async\s+)?function\s*\*?\s*({_IDENT})"),
    re.compile(rf"export\s+(?:abstract\s+)?class\s+({_IDENT})"),
)
MODULE_EXPORTS_PATTERN = re.compile(r"module\.exports\s*=\s*(.+)")
EXPORTS_PROPERTY_PATTERN = re.compile(rf"(?<![\w.])exports\.({_IDENT})\s*=")


# ============================================================================
# DATA CLASSES
# ============================================================================


@dataclass
class ImportStatement:
    source: str
    imported: List[str] = field(default_factory=list)
    kind: str = "import"  # import, require, dynamic, python
    is_type_only: bool = False
    is_default: bool = False
    alias: Optional[str] = None
    line: int = 1


@dataclass
class ExportStatement:
    exported: List[str] = field(default_factory=list)
    kind: str = "export"  # export, module.exports, exports, python
    is_default: bool = False
    source: Optional[str] = None
    line: int = 1


@dataclass
class DependencyEdge:
    """One resolved import from one project file to another."""

    from_file: str
    to_file: str
    kind: str
    strength: float
    imports: List[str] = field(default_factory=list)
    line: int = 1


@dataclass
class FileRelationship:
    file_path: str
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)
    imports: List[ImportStatement] = field(default_factory=list)
    exports: List[ExportStatement] = field(default_factory=list)
    cyclic_dependencies: List[str] = field(default_factory=list)
    relationship_strength: float = 0.0
    is_entry_point: bool = False
    is_leaf_node: bool = False


@dataclass
class GraphMetrics:
    total_files: int = 0
    total_dependencies: int = 0
    average_dependencies: float = 0.0
    max_dependencies: int = 0
    cyclic_dependency_count: int = 0
    cohesion: float = 0.0
    coupling: float = 0.0


@dataclass
class DependencyGraph:
    nodes: Dict[str, FileRelationship] = field(default_factory=dict)
    edges: List[DependencyEdge] = field(default_factory=list)
    entry_points: List[str] = field(default_factory=list)
    leaf_nodes: List[str] = field(default_factory=list)
    cyclic_dependencies: List[List[str]] = field(default_factory=list)
    clusters: List[List[str]] = field(default_factory=list)
    metrics: GraphMetrics = field(default_factory=GraphMetrics)


@dataclass
class ModuleSystem:
    kind: str  # commonjs, esmodule, amd, umd, python, mixed
    confidence: float
    examples: List[str] = field(default_factory=list)


# ============================================================================
# PARSING
# ============================================================================


def _split_names(raw: str) -> List[str]:
    """Names from an import brace list; "a as b" keeps "a"."""
    names = []
    for part in raw.split(","):
        name = re.split(r"\s+as\s+|\s*:\s*", part.strip())[0].strip()
        if name:
            names.append(name)
    return names


def parse_js_imports(content: str) -> List[ImportStatement]:
    """ES module, CommonJS and dynamic imports, one pass per line."""
    imports: List[ImportStatement] = []

    for line_number, line in enumerate(content.split("\n"), start=1):
        claimed: List[Tuple[int, int]] = []

        for pattern in ES_IMPORT_PATTERNS:
            for match in pattern.finditer(line):
                # Broader patterns must not re-report a span already parsed
                if any(start <= match.start() < end for start, end in claimed):
                    continue
                claimed.append(match.span())
                imports.append(_es_import_from_match(match, line_number))

        for match in REQUIRE_PATTERN.finditer(line):
            destructured, default_name, source = match.groups()
            imported = _split_names(destructured) if destructured else ([default_name] if default_name else [])
            imports.append(ImportStatement(
                source=source,
                imported=imported,
                kind="require",
                is_default=not destructured,
                line=line_number,
            ))

        for match in DYNAMIC_IMPORT_PATTERN.finditer(line):
            imports.append(ImportStatement(source=match.group(1), kind="dynamic", line=line_number))

    return imports


def _es_import_from_match(match: re.Match, line_number: int) -> ImportStatement:
    full = match.group(0)
    source = match.group(match.lastindex)
    is_type_only = bool(re.match(r"import\s+type\b", full))
    imported: List[str] = []
    is_default = False
    alias = None

    namespace = re.search(rf"\*\s*as\s+({_IDENT})", full)
    if namespace:
        imported = ["*"]
        alias = namespace.group(1)
    elif "{" in full:
        named = re.search(r"\{\s*([^}]+)\s*\}", full)
        imported = _split_names(named.group(1)) if named else []
        default = re.match(rf"import\s+(?!type\s)({_IDENT})\s*,", full)
        if default:
            imported.insert(0, default.group(1))
            is_default = True
    else:
        default = re.match(rf"import\s+(?:type\s+)?({_IDENT})\s+from", full)
        if default:
            imported = [default.group(1)]
            is_default = True

    return ImportStatement(
        source=source,
        imported=imported,
        kind="import",
        is_type_only=is_type_only,
        is_default=is_default,
        alias=alias,
        line=line_number,
    )


def parse_js_exports(content: str) -> List[ExportStatement]:
    exports: List[ExportStatement] = []

    for line_number, line in enumerate(content.split("\n"), start=1):
        re_export = RE_EXPORT_PATTERN.search(line)
        if re_export:
            exports.append(ExportStatement(
                exported=_split_names(re_export.group(1)), source=re_export.group(2), line=line_number,
            ))
        else:
            listed = EXPORT_LIST_PATTERN.search(line)
            if listed:
                exports.append(ExportStatement(exported=_split_names(listed.group(1)), line=line_number))

        export_all = EXPORT_ALL_PATTERN.search(line)
        if export_all:
            exports.append(ExportStatement(exported=["*"], source=export_all.group(1), line=line_number))

        if EXPORT_DEFAULT_PATTERN.search(line):
            exports.append(ExportStatement(exported=["default"], is_default=True, line=line_number))

        for pattern in EXPORT_DECLARATION_PATTERNS:
            declared = pattern.search(line)
            if declared:
                names = [n.strip() for n in declared.group(1).split(",") if n.strip()]
                exports.append(ExportStatement(exported=names, line=line_number))

        if MODULE_EXPORTS_PATTERN.search(line):
            exports.append(ExportStatement(
                exported=["default"], kind="module.exports", is_default=True, line=line_number,
            ))

        exported_property = EXPORTS_PROPERTY_PATTERN.search(line)
        if exported_property:
            exports.append(ExportStatement(
                exported=[exported_property.group(1)], kind="exports", line=line_number,
            ))

    return exports


def parse_python_imports(content: str, file_path: str = "<unknown>") -> List[ImportStatement]:
    """`import x`, `from x import a, b` and relative imports, via ast."""
    try:
        tree = ast.parse(content, filename=file_path)
    except (SyntaxError, ValueError) as e:
        logger.debug(f"Could not parse imports of {file_path}: {e}")
        return []

    imports = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.append(ImportStatement(
                    source=alias.name,
                    imported=[alias.asname or alias.name],
                    kind="python",
                    alias=alias.asname,
                    line=node.lineno,
                ))
        elif isinstance(node, ast.ImportFrom):
            source = "." * node.level + (node.module or "")
            imports.append(ImportStatement(
                source=source,
                imported=[a.name for a in node.names],
                kind="python",
                line=node.lineno,
            ))

    imports.sort(key=lambda i: i.line)
    return imports


def parse_python_exports(content: str, file_path: str = "<unknown>") -> List[ExportStatement]:
    """__all__ when declared, otherwise top-level public definitions."""
    try:
        tree = ast.parse(content, filename=file_path)
    except (SyntaxError, ValueError) as e:
        logger.debug(f"Could not parse exports of {file_path}: {e}")
        return []

    exports = []
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets
        ):
            if isinstance(node.value, (ast.List, ast.Tuple)):
                names = [
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                ]
                return [ExportStatement(exported=names, kind="python", line=node.lineno)]

        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            if not node.name.startswith("_"):
                exports.append(ExportStatement(exported=[node.name], kind="python", line=node.lineno))
        elif isinstance(node, ast.Assign):
            names = [t.id for t in node.targets if isinstance(t, ast.Name) and not t.id.startswith("_")]
            if names:
                exports.append(ExportStatement(exported=names, kind="python", line=node.lineno))
    return exports


def edge_strength(statement: ImportStatement) -> float:
    strength = BASE_EDGE_STRENGTH
    if statement.is_type_only:
        strength *= TYPE_ONLY_FACTOR
    if statement.kind == "dynamic":
        strength *= DYNAMIC_FACTOR
    if statement.imported:
        strength += min(MAX_IMPORTED_NAMES_BONUS, len(statement.imported) * PER_IMPORTED_NAME_BONUS)
    if statement.is_default:
        strength += DEFAULT_IMPORT_BONUS
    return min(1.0, round(strength, 4))


def relationship_strength(dependency_count: int, dependent_count: int) -> float:
    total = dependency_count + dependent_count
    if total == 0:
        return 0.0
    return min(1.0, total / RELATIONSHIP_SATURATION)


# ============================================================================
# ANALYZER
# ============================================================================


class DependencyAnalyzer:
    """
    Builds import graphs for a code root.

    Usage:
        analyzer = DependencyAnalyzer(Path("/repo"))
        graph = analyzer.build_dependency_graph()
        rel = analyzer.map_file_relationships("src/user.js")
    """

    def __init__(
        self,
        root: Path,
        include_extensions: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_depth: int = MAX_TRAVERSAL_DEPTH,
    ):
        self.root = Path(root).resolve()
        self.include_extensions = list(include_extensions or DEFAULT_DEPENDENCY_EXTENSIONS)
        self.exclude_patterns = list(exclude_patterns if exclude_patterns is not None else DEFAULT_EXCLUDE_PATTERNS)
        self.max_file_size = max_file_size
        self.max_depth = max_depth
        self.alias_map: Dict[str, Path] = self._load_path_aliases()

    # ------------------------------------------------------------------
    # Per-file analysis
    # ------------------------------------------------------------------

    def _resolve(self, file_path) -> Optional[Path]:
        return safe_resolve(file_path, self.root, self.exclude_patterns)

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _read(self, path: Path) -> Optional[str]:
        try:
            if path.stat().st_size > self.max_file_size:
                logger.debug(f"Skipping large file: {path}")
                return None
            return path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug(f"Could not read file {path}: {e}")
            return None

    def analyze_imports(self, file_path) -> List[ImportStatement]:
        """Imports of one file (root-relative or absolute path); [] if unreadable."""
        path = self._resolve(file_path)
        content = self._read(path) if path else None
        if content is None:
            return []
        if path.suffix == ".py":
            return parse_python_imports(content, str(path))
        return parse_js_imports(content)

    def analyze_exports(self, file_path) -> List[ExportStatement]:
        path = self._resolve(file_path)
        content = self._read(path) if path else None
        if content is None:
            return []
        if path.suffix == ".py":
            return parse_python_exports(content, str(path))
        return parse_js_exports(content)

    def resolve_module(self, source: str, from_file: Path, imported: Sequence[str] = ()) -> Optional[Path]:
        """Project file an import source refers to, or None (packages, missing files)."""
        if from_file.suffix == ".py":
            return self._resolve_python_module(source, from_file, imported)

        if source.startswith("./") or source.startswith("../"):
            return self._find_with_extensions(from_file.parent / source)
        if source.startswith("/"):
            return self._find_with_extensions(Path(source))

        for alias, target in self.alias_map.items():
            if source == alias or source.startswith(alias + "/"):
                return self._find_with_extensions(Path(str(target) + source[len(alias):]))
        return None

    def _find_with_extensions(self, base: Path) -> Optional[Path]:
        candidates = [base]
        candidates += [Path(str(base) + ext) for ext in self.include_extensions]
        candidates += [base / f"index{ext}" for ext in self.include_extensions]
        for candidate in candidates:
            if candidate.is_file():
                resolved = self._resolve(candidate)
                if resolved is not None:
                    return resolved
        return None

    def _resolve_python_module(self, source: str, from_file: Path, imported: Sequence[str]) -> Optional[Path]:
        level = len(source) - len(source.lstrip("."))
        module = source[level:]

        if level:
            base = from_file.parent
            for _ in range(level - 1):
                base = base.parent
        else:
            base = self.root

        target = base.joinpath(*module.split(".")) if module else base
        if not module:
            # from . import name: prefer the sibling module
            for name in imported:
                found = self._find_python_module(target / name)
                if found:
                    return found
            return self._find_python_module(target)
        return self._find_python_module(target)

    def _find_python_module(self, base: Path) -> Optional[Path]:
        for candidate in (Path(str(base) + ".py"), base / "__init__.py"):
            if candidate.is_file():
                resolved = self._resolve(candidate)
                if resolved is not None:
                    return resolved
        return None

    def _load_path_aliases(self) -> Dict[str, Path]:
        """tsconfig.json compilerOptions.paths, first target per alias."""
        aliases: Dict[str, Path] = {}
        tsconfig = self.root / "tsconfig.json"
        if not tsconfig.is_file():
            return aliases
        try:
            config = json.loads(tsconfig.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load path aliases from tsconfig.json: {e}")
            return aliases

        options = config.get("compilerOptions") or {}
        base_url = options.get("baseUrl") or ""
        for alias, targets in (options.get("paths") or {}).items():
            if isinstance(targets, list) and targets:
                key = alias[:-2] if alias.endswith("/*") else alias
                target = targets[0][:-2] if targets[0].endswith("/*") else targets[0]
                aliases[key] = (self.root / base_url / target).resolve()
        return aliases

    # ------------------------------------------------------------------
    # Project-level analysis
    # ------------------------------------------------------------------

    def find_source_files(self) -> List[Path]:
        return list(iter_source_files(
            self.root,
            self.include_extensions,
            self.exclude_patterns,
            max_depth=self.max_depth,
            max_file_size=self.max_file_size,
        ))

    def build_dependency_graph(self) -> DependencyGraph:
        """
        Resolve every import in the project into a graph.

        Nodes are root-relative paths; edges exist only between project
        files (external packages are not nodes).
        """
        nodes: Dict[str, FileRelationship] = {}
        paths: Dict[str, Path] = {}
        for path in self.find_source_files():
            key = self._relative(path)
            paths[key] = path
            nodes[key] = FileRelationship(
                file_path=key,
                imports=self.analyze_imports(path),
                exports=self.analyze_exports(path),
            )

        edges: List[DependencyEdge] = []
        for key, relationship in nodes.items():
            for statement in relationship.imports:
                target = self.resolve_module(statement.source, paths[key], statement.imported)
                if target is None:
                    continue
                target_key = self._relative(target)
                if target_key not in nodes:
                    continue
                if target_key not in relationship.dependencies:
                    relationship.dependencies.append(target_key)
                if key not in nodes[target_key].dependents:
                    nodes[target_key].dependents.append(key)
                edges.append(DependencyEdge(
                    from_file=key,
                    to_file=target_key,
                    kind=statement.kind,
                    strength=edge_strength(statement),
                    imports=list(statement.imported),
                    line=statement.line,
                ))

        for relationship in nodes.values():
            deps, dependents = len(relationship.dependencies), len(relationship.dependents)
            relationship.is_entry_point = dependents == 0 and deps > 0
            relationship.is_leaf_node = deps == 0 and dependents > 0
            relationship.relationship_strength = relationship_strength(deps, dependents)

        cycles = detect_cycles(nodes)
        for cycle in cycles:
            for file_key in cycle:
                nodes[file_key].cyclic_dependencies = [f for f in cycle if f != file_key]

        graph = DependencyGraph(
            nodes=nodes,
            edges=edges,
            entry_points=[k for k, r in nodes.items() if r.is_entry_point],
            leaf_nodes=[k for k, r in nodes.items() if r.is_leaf_node],
            cyclic_dependencies=cycles,
            clusters=detect_clusters(nodes, edges),
            metrics=compute_metrics(nodes, edges, cycles),
        )
        logger.info(
            f"Dependency graph built: {len(nodes)} files, {len(edges)} edges, {len(cycles)} cycles",
            extra={"files": len(nodes), "edges": len(edges), "cycles": len(cycles)},
        )
        return graph

    def map_file_relationships(self, file_path) -> Optional[FileRelationship]:
        """Relationships of one file without building the full graph."""
        path = self._resolve(file_path)
        if path is None or not path.is_file():
            return None

        imports = self.analyze_imports(path)
        dependencies = []
        for statement in imports:
            target = self.resolve_module(statement.source, path, statement.imported)
            if target is not None:
                target_key = self._relative(target)
                if target_key not in dependencies:
                    dependencies.append(target_key)

        dependents = []
        for other in self.find_source_files():
            if other == path:
                continue
            for statement in self.analyze_imports(other):
                if self.resolve_module(statement.source, other, statement.imported) == path:
                    dependents.append(self._relative(other))
                    break

        return FileRelationship(
            file_path=self._relative(path),
            dependencies=dependencies,
            dependents=dependents,
            imports=imports,
            exports=self.analyze_exports(path),
            relationship_strength=relationship_strength(len(dependencies), len(dependents)),
            is_entry_point=not dependents and bool(dependencies),
            is_leaf_node=not dependencies and bool(dependents),
        )

    def detect_module_system(self) -> ModuleSystem:
        """Dominant module system over a sample of project files."""
        counts = {"commonjs": 0, "esmodule": 0, "amd": 0, "umd": 0, "python": 0}
        examples: List[str] = []

        def note(system: str, path: Path, label: str) -> None:
            counts[system] += 1
            if len(examples) < 3:
                examples.append(f"{self._relative(path)}: {label}")

        for path in self.find_source_files()[:MODULE_SYSTEM_SAMPLE_SIZE]:
            content = self._read(path)
            if content is None:
                continue
            if path.suffix == ".py":
                if "import " in content:
                    note("python", path, "import")
                continue
            if "require(" in content or "module.exports" in content or "exports." in content:
                note("commonjs", path, "require/module.exports")
            if "import " in content or "export " in content:
                note("esmodule", path, "import/export")
            if "define(" in content or "require.config" in content:
                note("amd", path, "AMD define")
            if "typeof exports" in content and "typeof module" in content and "define.amd" in content:
                note("umd", path, "UMD pattern")

        total = sum(counts.values())
        if total == 0:
            return ModuleSystem(kind="mixed", confidence=0.0, examples=examples)

        # Ties resolve in this order
        dominant = max(["esmodule", "commonjs", "python", "amd", "umd"], key=lambda s: counts[s])
        max_count = counts[dominant]
        significant = [s for s, c in counts.items() if c / total > MIXED_SYSTEM_SHARE]
        if len(significant) > 1:
            return ModuleSystem(kind="mixed", confidence=1 - max_count / total, examples=examples)
        return ModuleSystem(kind=dominant, confidence=max_count / total, examples=examples)


# ============================================================================
# GRAPH ALGORITHMS
# ============================================================================


def detect_cycles(nodes: Dict[str, FileRelationship]) -> List[List[str]]:
    """DFS cycle detection; each cycle is path[start:] + [node]."""
    cycles: List[List[str]] = []
    visited = set()
    on_stack = set()
    path: List[str] = []

    def visit(node: str) -> None:
        if node in on_stack:
            start = path.index(node)
            cycles.append(path[start:] + [node])
            return
        if node in visited:
            return

        visited.add(node)
        on_stack.add(node)
        path.append(node)
        relationship = nodes.get(node)
        if relationship is not None:
            for dependency in relationship.dependencies:
                visit(dependency)
        path.pop()
        on_stack.discard(node)

    for node in nodes:
        if node not in visited:
            visit(node)
    return cycles


def detect_clusters(nodes: Dict[str, FileRelationship], edges: List[DependencyEdge]) -> List[List[str]]:
    """Groups of files joined by edges stronger than the cluster threshold."""
    strong = {
        (e.from_file, e.to_file) for e in edges if e.strength > CLUSTER_STRENGTH_THRESHOLD
    }
    clusters = []
    visited = set()

    for start in nodes:
        if start in visited:
            continue
        cluster = [start]
        queue = deque([start])
        visited.add(start)
        while queue:
            current = queue.popleft()
            relationship = nodes[current]
            neighbours = [d for d in relationship.dependencies if (current, d) in strong]
            neighbours += [d for d in relationship.dependents if (d, current) in strong]
            for neighbour in neighbours:
                if neighbour not in visited:
                    visited.add(neighbour)
                    cluster.append(neighbour)
                    queue.append(neighbour)
        if len(cluster) > 1:
            clusters.append(cluster)
    return clusters


def compute_metrics(
    nodes: Dict[str, FileRelationship],
    edges: List[DependencyEdge],
    cycles: List[List[str]],
) -> GraphMetrics:
    total_files = len(nodes)
    if total_files == 0:
        return GraphMetrics()

    cohesion_total = 0.0
    connected = 0
    for relationship in nodes.values():
        total_connections = len(relationship.dependencies) + len(relationship.dependents)
        if total_connections == 0:
            continue
        mutual = sum(
            1 for d in relationship.dependencies
            if d in nodes and relationship.file_path in nodes[d].dependencies
        )
        cohesion_total += mutual / total_connections
        connected += 1

    average = len(edges) / total_files
    return GraphMetrics(
        total_files=total_files,
        total_dependencies=len(edges),
        average_dependencies=round(average, 4),
        max_dependencies=max(len(r.dependencies) for r in nodes.values()),
        cyclic_dependency_count=len(cycles),
        cohesion=round(cohesion_total / connected, 4) if connected else 0.0,
        coupling=min(1.0, average / COUPLING_SATURATION),
    )
