"""Shared logging utilities.

Provides a SafeStreamHandler that tolerates broken pipes and closed file
descriptors, which happen when a collection run outlives the terminal or the
API server reloads mid-request, plus a helper that wires it onto the root
logger using the LOG_LEVEL environment variable.
"""
import logging
import os

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that ignores broken pipe and closed file errors.

    File handlers attached next to it keep receiving records; only the
    console stream is allowed to disappear.
    """

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # stdout closed
        except ValueError:
            pass  # I/O operation on closed file


def resolve_log_level(default=logging.INFO) -> int:
    """Translate LOG_LEVEL (name or number) into a logging level."""
    raw = os.environ.get("LOG_LEVEL", "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def configure_safe_logging(level=None):
    """Configure root logger with SafeStreamHandler.

    Safe to call multiple times (guards against duplicate handlers).

    Args:
        level: Logging level to set. Defaults to LOG_LEVEL from the
            environment, falling back to INFO.
    """
    if level is None:
        level = resolve_log_level()

    logger = logging.getLogger()
    if not any(isinstance(h, SafeStreamHandler) for h in logger.handlers):
        handler = SafeStreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handler.setLevel(level)
        logger.addHandler(handler)
        # Some libraries raise the root logger to WARNING on import.
        if logger.level == logging.NOTSET or logger.level > level:
            logger.setLevel(level)
