"""
Unit Tests for Path Security Module

Tests root containment, exclude patterns, sensitive file detection and
secrets redaction.
"""

import pytest

from taskscope.context_collection.services.path_security import (
    is_excluded_path,
    is_sensitive_file,
    redact_secrets,
    safe_resolve,
)

EXCLUDES = ["node_modules", ".git", "dist", "build", "coverage"]


class TestSafeResolve:
    """Tests for root containment."""

    def test_relative_path_inside_root(self, code_root):
        resolved = safe_resolve("src/user.js", code_root.resolve(), EXCLUDES)
        assert resolved == (code_root / "src" / "user.js").resolve()

    def test_absolute_path_inside_root(self, code_root):
        root = code_root.resolve()
        resolved = safe_resolve(str(root / "src" / "handler.js"), root, EXCLUDES)
        assert resolved == root / "src" / "handler.js"

    def test_rejects_traversal(self, code_root):
        assert safe_resolve("../../etc/passwd", code_root.resolve(), EXCLUDES) is None

    def test_rejects_absolute_outside_root(self, code_root):
        assert safe_resolve("/etc/passwd", code_root.resolve(), EXCLUDES) is None

    def test_rejects_excluded_directory(self, code_root):
        assert safe_resolve("node_modules/vendor/index.js", code_root.resolve(), EXCLUDES) is None

    @pytest.mark.parametrize("path", [None, "", "   "])
    def test_rejects_empty_path(self, code_root, path):
        assert safe_resolve(path, code_root.resolve(), EXCLUDES) is None

    def test_rejects_symlink_escaping_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        outside = tmp_path / "outside.txt"
        outside.write_text("private")
        (root / "link.txt").symlink_to(outside)

        assert safe_resolve("link.txt", root.resolve()) is None

    def test_nonexistent_file_inside_root_is_resolved(self, code_root):
        # Existence is checked by the reader, not the resolver
        resolved = safe_resolve("src/missing.js", code_root.resolve(), EXCLUDES)
        assert resolved == code_root.resolve() / "src" / "missing.js"


class TestExcludedPath:

    def test_returns_matching_pattern(self):
        assert is_excluded_path("src/.git/config", [".git"]) == ".git"

    def test_allowed_path(self):
        assert is_excluded_path("src/app.py", EXCLUDES) is None

    def test_windows_separators(self):
        assert is_excluded_path("web\\node_modules\\x.js", EXCLUDES) == "node_modules"


class TestSensitiveFiles:
    """Tests for sensitive file detection."""

    @pytest.mark.parametrize("path", [
        ".env",
        ".env.local",
        "config/credentials.json",
        "src/secrets.js",
        "certs/server.pem",
        "deploy/id_rsa.key",
    ])
    def test_sensitive(self, path):
        assert is_sensitive_file(path) is True

    @pytest.mark.parametrize("path", ["src/app.py", "src/user.js", "README.md"])
    def test_not_sensitive(self, path):
        assert is_sensitive_file(path) is False


class TestRedactSecrets:
    """Tests for secrets redaction."""

    def test_quoted_value(self):
        assert redact_secrets('api_key = "sk-1234567890abcdef"') == 'api_key = "[REDACTED]"'

    def test_unquoted_env_style(self):
        assert redact_secrets("API_KEY=sk-1234567890") == 'API_KEY = "[REDACTED]"'

    def test_yaml_style(self):
        assert redact_secrets('password: "hunter2"') == 'password = "[REDACTED]"'

    def test_keeps_surrounding_code(self):
        content = "const user = load();\nconst token = 'abc123';\nreturn user;"
        redacted = redact_secrets(content)

        assert "abc123" not in redacted
        assert "const user = load();" in redacted
        assert "return user;" in redacted

    def test_exported_env_line(self):
        assert redact_secrets("export DB_PASSWORD=hunter2") == 'export DB_PASSWORD = "[REDACTED]"'

    @pytest.mark.parametrize("content", [
        "def login(username, password: str, token: str = None):",
        "password = request.form.get('password_field')",
        "token = build_token()",
        "    secret = settings.SECRET_VALUE",
        "function refresh(token, { apiKey }) { return token; }",
    ])
    def test_code_without_secret_values_unchanged(self, content):
        assert redact_secrets(content) == content

    def test_no_secrets_unchanged(self):
        content = "function processUser(user) { return user.name; }"
        assert redact_secrets(content) == content
