"""
Tests for DependencyAnalyzer: import/export parsing, module resolution
and the project dependency graph.
"""

import json

import pytest

from conftest import write_files
from taskscope.context_collection.services.dependency_analyzer import (
    DependencyAnalyzer,
    ImportStatement,
    edge_strength,
    parse_js_exports,
    parse_js_imports,
    parse_python_exports,
    parse_python_imports,
    relationship_strength,
)

JS_IMPORTS = """import React, { useState, useEffect } from 'react';
import type { User } from './types';
import * as utils from './utils';
import api from '../api';
import './styles.css';
const { readFile } = require('fs');
const path = require('path');
const lazy = import('./lazy');
"""

JS_EXPORTS = """export function save() {}
export class Store {}
export default Store;
export { a, b as c };
export * from './all';
module.exports = { save };
exports.validate = validate;
"""


class TestParseJsImports:

    def test_all_import_forms(self):
        imports = parse_js_imports(JS_IMPORTS)

        assert [(i.source, i.kind) for i in imports] == [
            ("react", "import"),
            ("./types", "import"),
            ("./utils", "import"),
            ("../api", "import"),
            ("./styles.css", "import"),
            ("fs", "require"),
            ("path", "require"),
            ("./lazy", "dynamic"),
        ]
        assert [i.line for i in imports] == [1, 2, 3, 4, 5, 6, 7, 8]

    def test_default_plus_named(self):
        react = parse_js_imports(JS_IMPORTS)[0]

        assert react.imported == ["React", "useState", "useEffect"]
        assert react.is_default is True

    def test_type_only(self):
        types = parse_js_imports(JS_IMPORTS)[1]

        assert types.is_type_only is True
        assert types.imported == ["User"]
        assert types.is_default is False

    def test_namespace_and_default(self):
        imports = parse_js_imports(JS_IMPORTS)

        assert imports[2].imported == ["*"]
        assert imports[2].alias == "utils"
        assert imports[3].imported == ["api"]
        assert imports[3].is_default is True
        assert imports[4].imported == []

    def test_require_forms(self):
        imports = parse_js_imports(JS_IMPORTS)

        assert imports[5].imported == ["readFile"]
        assert imports[5].is_default is False
        assert imports[6].imported == ["path"]
        assert imports[6].is_default is True


class TestParseJsExports:

    def test_export_forms(self):
        exports = parse_js_exports(JS_EXPORTS)

        assert [(e.exported, e.kind, e.is_default) for e in exports] == [
            (["save"], "export", False),
            (["Store"], "export", False),
            (["default"], "export", True),
            (["a", "b"], "export", False),
            (["*"], "export", False),
            (["default"], "module.exports", True),
            (["validate"], "exports", False),
        ]
        assert exports[4].source == "./all"


class TestPythonParsing:

    def test_imports(self):
        content = "import os\nimport numpy as np\nfrom .models import User, Account\nfrom ..core import utils\n"

        imports = parse_python_imports(content)

        assert [(i.source, i.imported) for i in imports] == [
            ("os", ["os"]),
            ("numpy", ["np"]),
            (".models", ["User", "Account"]),
            ("..core", ["utils"]),
        ]
        assert imports[1].alias == "np"

    def test_unparsable_source(self):
        assert parse_python_imports("def broken(:\n") == []

    def test_exports_from_all(self):
        exports = parse_python_exports("__all__ = ['a', 'b']\ndef a(): pass\ndef b(): pass\n")

        assert len(exports) == 1
        assert exports[0].exported == ["a", "b"]

    def test_exports_public_definitions(self):
        content = "def public(): pass\ndef _private(): pass\nclass Thing: pass\nVALUE = 1\n"

        exports = parse_python_exports(content)

        assert [e.exported for e in exports] == [["public"], ["Thing"], ["VALUE"]]


class TestStrength:

    @pytest.mark.parametrize("statement,expected", [
        (ImportStatement(source="m", imported=["a"], is_default=True), 0.7),
        (ImportStatement(source="m", imported=["T"], is_type_only=True), 0.35),
        (ImportStatement(source="m", kind="dynamic"), 0.35),
        (ImportStatement(source="m", imported=["a", "b", "c", "d", "e"]), 0.8),
    ])
    def test_edge_strength(self, statement, expected):
        assert edge_strength(statement) == pytest.approx(expected)

    def test_relationship_strength(self):
        assert relationship_strength(0, 0) == 0.0
        assert relationship_strength(2, 3) == 0.5
        assert relationship_strength(8, 8) == 1.0


@pytest.fixture
def graph_root(tmp_path):
    return write_files(tmp_path / "proj", {
        "src/a.js": "import { b } from './b';\nimport e from './e';\n",
        "src/b.js": "import { a } from './a';\nexport const b = 1;\n",
        "src/c.js": "import React from 'react';\nimport a from './a';\n",
        "src/e.js": "export default 1;\n",
    })


class TestDependencyGraph:

    def test_graph_structure(self, graph_root):
        graph = DependencyAnalyzer(graph_root).build_dependency_graph()

        assert sorted(graph.nodes) == ["src/a.js", "src/b.js", "src/c.js", "src/e.js"]
        assert len(graph.edges) == 4
        assert graph.entry_points == ["src/c.js"]
        assert graph.leaf_nodes == ["src/e.js"]

    def test_external_packages_not_nodes(self, graph_root):
        graph = DependencyAnalyzer(graph_root).build_dependency_graph()

        assert "react" not in graph.nodes
        assert all(e.to_file in graph.nodes for e in graph.edges)

    def test_cycle_detected(self, graph_root):
        graph = DependencyAnalyzer(graph_root).build_dependency_graph()

        assert graph.cyclic_dependencies == [["src/a.js", "src/b.js", "src/a.js"]]
        assert graph.nodes["src/a.js"].cyclic_dependencies == ["src/b.js"]

    def test_metrics(self, graph_root):
        metrics = DependencyAnalyzer(graph_root).build_dependency_graph().metrics

        assert metrics.total_files == 4
        assert metrics.total_dependencies == 4
        assert metrics.max_dependencies == 2
        assert metrics.cyclic_dependency_count == 1
        assert metrics.average_dependencies == 1.0

    def test_no_strong_clusters(self, graph_root):
        assert DependencyAnalyzer(graph_root).build_dependency_graph().clusters == []

    def test_map_file_relationships(self, graph_root):
        relationship = DependencyAnalyzer(graph_root).map_file_relationships("src/a.js")

        assert relationship.file_path == "src/a.js"
        assert relationship.dependencies == ["src/b.js", "src/e.js"]
        assert relationship.dependents == ["src/b.js", "src/c.js"]
        assert relationship.is_entry_point is False
        assert relationship.is_leaf_node is False

    def test_map_missing_file(self, graph_root):
        assert DependencyAnalyzer(graph_root).map_file_relationships("src/missing.js") is None

    def test_outside_root_ignored(self, graph_root):
        assert DependencyAnalyzer(graph_root).analyze_imports("../elsewhere.js") == []


class TestModuleResolution:

    def test_tsconfig_alias(self, tmp_path):
        root = write_files(tmp_path / "ts", {
            "tsconfig.json": json.dumps({"compilerOptions": {"baseUrl": ".", "paths": {"@/*": ["src/*"]}}}),
            "src/app.ts": "import { fmt } from '@/utils/format';\n",
            "src/utils/format.ts": "export const fmt = 1;\n",
        })
        analyzer = DependencyAnalyzer(root)

        resolved = analyzer.resolve_module("@/utils/format", root / "src" / "app.ts")

        assert resolved == (root / "src" / "utils" / "format.ts").resolve()
        assert analyzer.resolve_module("react", root / "src" / "app.ts") is None

    def test_python_modules(self, tmp_path):
        root = write_files(tmp_path / "py", {
            "pkg/__init__.py": "",
            "pkg/models.py": "class User: pass\n",
            "pkg/service.py": "from .models import User\n",
        })
        analyzer = DependencyAnalyzer(root)
        service = root / "pkg" / "service.py"
        models = (root / "pkg" / "models.py").resolve()

        assert analyzer.resolve_module(".models", service, ["User"]) == models
        assert analyzer.resolve_module(".", service, ["models"]) == models
        assert analyzer.resolve_module("pkg.models", service) == models
        assert analyzer.resolve_module("os", service) is None

    def test_index_file(self, tmp_path):
        root = write_files(tmp_path / "idx", {
            "src/main.js": "const lib = require('./lib');\n",
            "src/lib/index.js": "module.exports = {};\n",
        })

        resolved = DependencyAnalyzer(root).resolve_module("./lib", root / "src" / "main.js")

        assert resolved == (root / "src" / "lib" / "index.js").resolve()


class TestModuleSystem:

    def test_commonjs_project(self, code_root):
        system = DependencyAnalyzer(code_root).detect_module_system()

        assert system.kind == "commonjs"
        assert system.confidence == 1.0

    def test_empty_project(self, tmp_path):
        system = DependencyAnalyzer(tmp_path).detect_module_system()

        assert system.kind == "mixed"
        assert system.confidence == 0.0
