"""
Path Security Module

Root containment, exclude-pattern filtering, sensitive file detection and
secrets redaction for every file the collection pipeline reads.

A rejected path is never an error: callers treat it as a file that does
not exist.
"""

import fnmatch
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

# Files that are never read into a context, whatever the task asks for
SENSITIVE_FILE_PATTERNS: List[str] = [
    ".env*",
    "*secrets*",
    "*credentials*",
    "*.pem",
    "*.key",
    "*.p12",
    "*.pfx",
    "*.keystore",
    "*.jks",
    ".aws/*",
    ".ssh/*",
]

SECRET_KEY_PATTERN = r"(api[_-]?key|password|token|secret|auth[_-]?token|access[_-]?key|private[_-]?key)"

# Quoted values after = or :, in code, YAML or JSON:
#   - api_key = "sk-1234..."
#   - password: "secret123"
#   - AUTH_TOKEN = 'token'
QUOTED_SECRET_REGEX = re.compile(
    SECRET_KEY_PATTERN + r"\s*[=:]\s*['\"]([^'\"\n]+)['\"]",
    flags=re.IGNORECASE,
)

# Unquoted env-file assignments on their own line:
#   - API_KEY=sk-1234567890
#   - export DB_PASSWORD=hunter2
ENV_SECRET_REGEX = re.compile(
    r"^([ \t]*(?:export[ \t]+)?)(\w*" + SECRET_KEY_PATTERN + r"\w*)[ \t]*=[ \t]*([^\s'\";,]+)[ \t]*$",
    flags=re.IGNORECASE | re.MULTILINE,
)

# Names, dotted names and calls are code, not secret values
IDENTIFIER_VALUE = re.compile(r"^[A-Za-z_][\w.]*(?:\(.*)?$")

PathLike = Union[str, Path]


def is_excluded_path(relative_path: str, exclude_patterns: Iterable[str]) -> Optional[str]:
    """
    Return the first exclude pattern appearing as a substring of the path.

    Args:
        relative_path: Path (normally relative to the allowed root)
        exclude_patterns: Directory names such as ".git" or "node_modules"

    Returns:
        The matching pattern, or None when the path is allowed

    Example:
        >>> is_excluded_path("src/.git/config", [".git"])
        '.git'
        >>> is_excluded_path("src/app.py", [".git"]) is None
        True
    """
    normalized = relative_path.replace("\\", "/")
    for pattern in exclude_patterns:
        if pattern and pattern in normalized:
            return pattern
    return None


def safe_resolve(
    path: Optional[PathLike],
    root: Path,
    exclude_patterns: Iterable[str] = (),
) -> Optional[Path]:
    """
    Resolve a requested path and confirm it is readable by the pipeline.

    Relative paths are joined to the root. The resolved path must equal the
    root or live underneath it (symlinks are followed before the check, so
    "../../etc/passwd" and links pointing outside are both rejected), and no
    exclude pattern may appear in its root-relative part.

    Args:
        path: Requested file path (absolute or root-relative)
        root: Resolved allowed root directory
        exclude_patterns: Directory names to refuse

    Returns:
        The resolved Path, or None if the path is empty, escapes the root
        or hits an exclude pattern.
    """
    if path is None or not str(path).strip():
        logger.debug("Path resolution skipped: empty path")
        return None

    try:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = root / candidate
        resolved = candidate.resolve()
    except (ValueError, TypeError, OSError, RuntimeError) as e:
        logger.warning(
            f"Path resolution error: {e}",
            extra={"path": str(path), "error": str(e)},
        )
        return None

    if resolved != root and not resolved.is_relative_to(root):
        logger.warning(
            f"Path rejected: '{path}' resolves outside the allowed root",
            extra={"path": str(path), "resolved": str(resolved), "root": str(root)},
        )
        return None

    relative = "" if resolved == root else str(resolved.relative_to(root))
    pattern = is_excluded_path("/" + relative, exclude_patterns)
    if pattern is not None:
        logger.debug(
            f"Path rejected: '{path}' matches exclude pattern '{pattern}'",
            extra={"path": str(path), "pattern": pattern},
        )
        return None

    return resolved


def is_sensitive_file(filepath: PathLike) -> bool:
    """
    Check if filepath matches sensitive file patterns.

    Example:
        >>> is_sensitive_file(".env.local")
        True
        >>> is_sensitive_file("src/app.py")
        False
    """
    normalized = str(filepath).replace("\\", "/")
    name = Path(normalized).name

    for pattern in SENSITIVE_FILE_PATTERNS:
        if fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(name, pattern):
            logger.info(
                f"Sensitive file skipped: '{filepath}' matches pattern '{pattern}'",
                extra={"filepath": str(filepath), "pattern": pattern},
            )
            return True
    return False


def redact_secrets(content: str) -> str:
    """
    Redact potential secrets from code content.

    Key names are kept for context, values become "[REDACTED]". Only quoted
    literals and env-file style NAME=value lines are touched; annotations
    such as ``password: str`` and assignments from other names are left as
    they are.

    Example:
        >>> redact_secrets('api_key = "sk-1234567890abcdef"')
        'api_key = "[REDACTED]"'
        >>> redact_secrets("def login(password: str):")
        'def login(password: str):'
    """
    redaction_count = 0

    def redact_env(match: re.Match) -> str:
        nonlocal redaction_count
        name, value = match.group(2), match.group(4)
        if not name.isupper() and IDENTIFIER_VALUE.match(value):
            return match.group(0)
        redaction_count += 1
        return f'{match.group(1)}{name} = "[REDACTED]"'

    redacted, quoted_count = QUOTED_SECRET_REGEX.subn(r'\1 = "[REDACTED]"', content)
    redaction_count += quoted_count
    redacted = ENV_SECRET_REGEX.sub(redact_env, redacted)

    if redaction_count == 0:
        return content

    logger.info(
        f"Redacting {redaction_count} potential secret(s) from content",
        extra={"redaction_count": redaction_count},
    )
    return redacted
