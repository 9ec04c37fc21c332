"""
Token Budget

Filtering, conversion, deduplication and token-budget trimming of scored
sections. Token counts are estimated at four characters per token.
"""

import hashlib
import logging
import math
import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence

from ..models import CodeContext, ContextSource, ContextType, TaskType
from .section_extractor import CodeSection

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# Normalized content prefix used as the duplicate key
DEDUP_PREFIX_CHARS = 200

# A cut-off line is only kept when this many characters of budget remain
MIN_PARTIAL_LINE_CHARS = 20
ELLIPSIS = "..."

SUMMARIZED_SUFFIX = " (summarized)"

SECTION_CONTEXT_TYPES = {
    "function": ContextType.SNIPPET,
    "class": ContextType.SNIPPET,
    "usage": ContextType.SNIPPET,
    "comment": ContextType.SNIPPET,
    "import": ContextType.DEPENDENCY,
}


def estimate_tokens(text: Optional[str]) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def summarize_content(content: str, max_tokens: int) -> str:
    """
    Shorten content to roughly max_tokens, keeping whole lines.

    Content already within budget is returned unchanged. Otherwise lines are
    kept while they fit; the first line that does not fit is cut with "..."
    when more than MIN_PARTIAL_LINE_CHARS characters of budget remain.
    """
    if estimate_tokens(content) <= max_tokens:
        return content

    target_chars = max_tokens * CHARS_PER_TOKEN
    parts = []
    length = 0
    for line in content.split("\n"):
        if length + len(line) + 1 > target_chars:
            remaining = target_chars - length
            if remaining > MIN_PARTIAL_LINE_CHARS:
                parts.append(line[:remaining - 5] + ELLIPSIS)
            break
        parts.append(line + "\n")
        length += len(line) + 1

    return "".join(parts).strip()


def content_hash(content: Optional[str]) -> str:
    """Duplicate key: digest of the lower-cased, whitespace-collapsed prefix."""
    normalized = re.sub(r"\s+", " ", content or "").strip().lower()
    return hashlib.sha1(normalized[:DEDUP_PREFIX_CHARS].encode("utf-8")).hexdigest()


def filter_sections(
    sections: Sequence[CodeSection],
    relevance_threshold: float,
    max_contexts: int,
) -> List[CodeSection]:
    """Sections at or above the threshold, at most max_contexts (input order kept)."""
    kept = [s for s in sections if s.relevance_score >= relevance_threshold]
    return kept[:max_contexts]


def describe_section(section: CodeSection) -> str:
    file_name = PurePosixPath(section.file_path.replace("\\", "/")).name
    if section.start_line == section.end_line:
        line_range = f"line {section.start_line}"
    else:
        line_range = f"lines {section.start_line}-{section.end_line}"
    return f"{section.kind} in {file_name} ({line_range})"


def convert_sections(
    sections: Sequence[CodeSection],
    task_id: str,
    task_type: TaskType,
    now: Optional[datetime] = None,
) -> List[CodeContext]:
    """CodeContext records with ids {task_id}_context_{i}."""
    now = now or datetime.now(timezone.utc)
    contexts = []
    for index, section in enumerate(sections):
        contexts.append(CodeContext(
            id=f"{task_id}_context_{index}",
            task_id=task_id,
            task_type=task_type,
            context_type=SECTION_CONTEXT_TYPES.get(section.kind, ContextType.SNIPPET),
            source=ContextSource.AI_COLLECTED,
            file_path=section.file_path,
            start_line=section.start_line,
            end_line=section.end_line,
            content=section.content,
            description=describe_section(section),
            relevance_score=round(max(0.0, min(1.0, section.relevance_score)), 4),
            keywords=list(section.related_entities),
            date_collected=now,
            is_stale=False,
        ))
    return contexts


def deduplicate_contexts(contexts: Sequence[CodeContext]) -> List[CodeContext]:
    """
    Drop contexts whose content key was already seen.

    The first occurrence survives; it absorbs the repeat's keywords (union,
    order kept) and the higher relevance score.
    """
    unique: List[CodeContext] = []
    by_hash: Dict[str, int] = {}

    for context in contexts:
        key = content_hash(context.content)
        if key not in by_hash:
            by_hash[key] = len(unique)
            unique.append(context)
            continue

        index = by_hash[key]
        existing = unique[index]
        unique[index] = existing.model_copy(update={
            "keywords": list(dict.fromkeys([*existing.keywords, *context.keywords])),
            "relevance_score": max(existing.relevance_score, context.relevance_score),
        })

    if len(unique) < len(contexts):
        logger.debug(f"Deduplicated {len(contexts) - len(unique)} context(s)")
    return unique


class TokenBudgetOptimizer:
    """
    Fits contexts under a task-level token ceiling.

    Contexts are taken best first; one over the per-context limit is
    summarized before it is charged against the ceiling, and a context
    that would overflow the ceiling is skipped (smaller ones after it may
    still fit). Summarization only starts once the candidates together
    exceed compression_threshold tokens.
    """

    def __init__(self, max_tokens_per_context: int, summarize: bool = True, compression_threshold: int = 0):
        self.max_tokens_per_context = max_tokens_per_context
        self.summarize = summarize
        self.compression_threshold = compression_threshold

    def apply(self, contexts: Sequence[CodeContext], ceiling: int) -> List[CodeContext]:
        ranked = sorted(contexts, key=lambda c: c.relevance_score, reverse=True)
        kept: List[CodeContext] = []
        total = 0
        summarized = 0
        compress = self.summarize and (
            sum(estimate_tokens(c.content) for c in ranked) > self.compression_threshold
        )

        for context in ranked:
            content = context.content or ""
            if compress and estimate_tokens(content) > self.max_tokens_per_context:
                context = context.model_copy(update={
                    "content": summarize_content(content, self.max_tokens_per_context),
                    "description": context.description + SUMMARIZED_SUFFIX,
                })
                summarized += 1

            cost = estimate_tokens(context.content)
            if total + cost > ceiling:
                continue
            kept.append(context)
            total += cost

        logger.info(
            f"Token budget: kept {len(kept)}/{len(ranked)} context(s), {total}/{ceiling} tokens",
            extra={"kept": len(kept), "tokens": total, "ceiling": ceiling, "summarized": summarized},
        )
        return kept


def apply_token_budget(
    contexts: Sequence[CodeContext],
    ceiling: int,
    max_tokens_per_context: int,
    summarize: bool = True,
    compression_threshold: int = 0,
) -> List[CodeContext]:
    return TokenBudgetOptimizer(max_tokens_per_context, summarize, compression_threshold).apply(contexts, ceiling)
