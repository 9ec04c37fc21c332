#!/usr/bin/env python
"""
TaskScope CLI - collect and inspect code contexts for tasks.

Usage:
    python -m taskscope.cli collect --task-id BUG-1 --type bug \\
        --title "Crash on save" --description-file trace.txt --root ./repo
    python -m taskscope.cli contexts BUG-1          # List persisted contexts
    python -m taskscope.cli freshness BUG-1         # Fresh / stale split
    python -m taskscope.cli init-db                 # Create the schema
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from taskscope.context_collection.config import load_config_from_env
from taskscope.context_collection.models import TaskAnalysisInput, TaskType
from taskscope.context_collection.services import (
    ContextCollectionEngine,
    ContextCollectionError,
    ContextStore,
    ContextToolService,
    SIGNAL_EXTRACTORS,
    build_signal_extractor,
    format_collection_result,
    format_contexts,
    format_freshness_report,
)
from taskscope.db.connection import get_connection, init_db
from taskscope.logging_utils import configure_safe_logging

logger = logging.getLogger(__name__)


def _read_description(args) -> str:
    if args.description_file == "-":
        return sys.stdin.read()
    if args.description_file:
        return Path(args.description_file).read_text(encoding="utf-8")
    return args.description or ""


def build_task(args) -> TaskAnalysisInput:
    return TaskAnalysisInput(
        task_id=args.task_id,
        task_type=args.type,
        title=args.title,
        description=_read_description(args),
        current_state=args.current_state,
        desired_state=args.desired_state,
        expected_behavior=args.expected,
        actual_behavior=args.actual,
        files_likely_involved=args.file or [],
        keywords=args.keyword,
        entities=args.entity,
    )


def cmd_collect(args) -> int:
    """Run the pipeline against a root and print the result."""
    try:
        task = build_task(args)
    except (ValidationError, OSError) as e:
        print(f"Invalid task: {e}", file=sys.stderr)
        return 2

    engine = ContextCollectionEngine(
        root_path=args.root,
        config=load_config_from_env(),
        extractor=build_signal_extractor(args.extractor),
    )

    try:
        if args.persist:
            with get_connection() as conn:
                service = ContextToolService(engine, ContextStore(conn))
                result = asyncio.run(service.collect(task))
        else:
            result = asyncio.run(engine.collect_contexts(task))
    except ContextCollectionError as e:
        print(f"Collection failed: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print(format_collection_result(result))
    return 0


def _service(conn) -> ContextToolService:
    engine = ContextCollectionEngine(config=load_config_from_env())
    return ContextToolService(engine, ContextStore(conn))


def cmd_contexts(args) -> int:
    """List persisted contexts for a task."""
    with get_connection() as conn:
        contexts = _service(conn).get(args.task_id, args.type)

    if args.json:
        print(json.dumps([c.model_dump(mode="json") for c in contexts], indent=2))
    else:
        print(format_contexts(contexts))
    return 0


def cmd_freshness(args) -> int:
    """Show which persisted contexts are stale."""
    with get_connection() as conn:
        report = _service(conn).check_freshness(args.task_id, args.hours)

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(format_freshness_report(report))
    return 0


def cmd_init_db(args) -> int:
    """Create the code_contexts table and indexes."""
    init_db()
    print("Database schema initialized.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TaskScope - code context collection for issue-tracker tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    task_types = [t.value for t in TaskType]

    # collect
    p_collect = subparsers.add_parser("collect", help="Collect contexts for a task")
    p_collect.add_argument("--task-id", required=True, help="Task ID")
    p_collect.add_argument("--type", required=True, choices=task_types, help="Task type")
    p_collect.add_argument("--title", required=True, help="Task title")
    p_collect.add_argument("--description", help="Task description")
    p_collect.add_argument("--description-file", help="Read the description from a file ('-' for stdin)")
    p_collect.add_argument("--current-state", help="Current state")
    p_collect.add_argument("--desired-state", help="Desired state")
    p_collect.add_argument("--expected", help="Expected behavior")
    p_collect.add_argument("--actual", help="Actual behavior")
    p_collect.add_argument("-f", "--file", action="append", help="File likely involved (repeatable)")
    p_collect.add_argument("-k", "--keyword", action="append", help="Keyword override (repeatable)")
    p_collect.add_argument("-e", "--entity", action="append", help="Entity override (repeatable)")
    p_collect.add_argument("--root", help="Code root (default: CONTEXT_ROOT or cwd)")
    p_collect.add_argument("--extractor", choices=sorted(SIGNAL_EXTRACTORS), default="scored",
                           help="Signal extractor")
    p_collect.add_argument("--json", action="store_true", help="Print the raw result as JSON")
    p_collect.add_argument("--persist", action="store_true", help="Save contexts to the database")
    p_collect.set_defaults(func=cmd_collect)

    # contexts
    p_contexts = subparsers.add_parser("contexts", help="List persisted contexts for a task")
    p_contexts.add_argument("task_id", help="Task ID")
    p_contexts.add_argument("--type", choices=task_types, help="Filter by task type")
    p_contexts.add_argument("--json", action="store_true", help="Print JSON")
    p_contexts.set_defaults(func=cmd_contexts)

    # freshness
    p_fresh = subparsers.add_parser("freshness", help="Check context freshness for a task")
    p_fresh.add_argument("task_id", help="Task ID")
    p_fresh.add_argument("--hours", type=float, default=24, help="Staleness threshold in hours")
    p_fresh.add_argument("--json", action="store_true", help="Print JSON")
    p_fresh.set_defaults(func=cmd_freshness)

    # init-db
    p_init = subparsers.add_parser("init-db", help="Create the database schema")
    p_init.set_defaults(func=cmd_init_db)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    level = getattr(logging, args.log_level.upper(), None) if args.log_level else None
    configure_safe_logging(level if isinstance(level, int) else None)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
