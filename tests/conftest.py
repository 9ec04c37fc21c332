"""
Pytest configuration for TaskScope tests.

Test Tier System:
- fast (default): Pure unit tests, all I/O mocked or on tmp_path
- medium: API TestClient, end-to-end collection runs over a sample repo
- slow: External APIs (real LLM signal extraction)

Run tiers:
- pytest                          # Fast + Medium (default)
- pytest -m medium                # Medium only
- pytest -m slow                  # Slow only
- pytest --override-ini="addopts=" -v   # Full suite (all tiers)

Note: Unmarked tests are auto-assigned to 'fast' tier. To add a new test:
- No marker needed for fast (unit) tests
- Add @pytest.mark.medium for API TestClient tests
- Add @pytest.mark.slow for external API tests
- Tests marked @pytest.mark.integration (without tier) default to 'medium'

API Key Safety:
- Fast/medium tests force-set a fake OPENAI_API_KEY to prevent accidental API calls
- Only slow tests (and full suite) preserve real API keys from environment
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Tier Auto-Assignment
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """
    Automatically assign tier markers to unmarked tests.

    Tests are fast by default unless explicitly marked as medium or slow.
    Tests marked with @pytest.mark.integration (but no tier) are assigned
    to 'medium'.
    """
    for item in items:
        has_tier = (
            list(item.iter_markers(name='fast')) or
            list(item.iter_markers(name='medium')) or
            list(item.iter_markers(name='slow'))
        )
        if has_tier:
            continue

        if list(item.iter_markers(name='skip')):
            continue

        if list(item.iter_markers(name='integration')):
            item.add_marker(pytest.mark.medium)
            continue

        item.add_marker(pytest.mark.fast)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings."""
    markexpr = getattr(config.option, 'markexpr', '') or ''

    # Real API keys are ONLY allowed when slow tests are being run
    includes_slow_tests = (
        not markexpr or
        (
            'slow' in markexpr and
            'not slow' not in markexpr
        )
    )

    if includes_slow_tests:
        os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key-for-testing")
    else:
        os.environ["OPENAI_API_KEY"] = "sk-test-fake-key-for-testing"


# =============================================================================
# Sample code root
# =============================================================================

# processUser spans lines 41-46; line 45 dereferences user.name
USER_JS = "\n".join(
    ["// User profile helpers"]
    + [f"// reserved line {n}" for n in range(2, 41)]
    + [
        "function processUser(user) {",
        "  if (!user) {",
        "    return null;",
        "  }",
        "  return user.name.toUpperCase();",
        "}",
        "",
        "module.exports = { processUser };",
    ]
) + "\n"

HANDLER_JS = """const { processUser } = require('./user');

/**
 * Request handler for profile saves.
 */
function handleRequest(req, res) {
  const user = req.body.user;
  const result = processUser(user);
  res.json({ name: result });
}

module.exports = { handleRequest };
"""

ACCOUNT_PY = '''class Account:
    """A user account."""

    def __init__(self, name):
        self.name = name

    def display_name(self):
        return self.name.title()
'''

# Must never be picked up: excluded directory and sensitive file
VENDORED_JS = "function processUser(x) { return x; }\n"
SECRETS_JS = "const apiKey = 'sk-live-123';\n"


def write_files(root: Path, files: dict) -> Path:
    """Write {relative_path: content} under root and return root."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def code_root(tmp_path):
    """A small JS/Python project to collect contexts from."""
    root = tmp_path / "repo"
    root.mkdir()
    return write_files(root, {
        "src/user.js": USER_JS,
        "src/handler.js": HANDLER_JS,
        "src/secrets.js": SECRETS_JS,
        "app/account.py": ACCOUNT_PY,
        "node_modules/vendor/index.js": VENDORED_JS,
        ".env": "API_KEY=sk-live-123\n",
    })
