"""
TaskScope

Collects and ranks the code an issue-tracking task is about: signal
extraction, stack trace parsing, definition and pattern search, dependency
mapping, relevance scoring and token budgeting.
"""

__version__ = "0.1.0"
