"""
Relevance Scorer

Final score for each candidate section:

    score = w_keyword   * sum of keyword weights found in the content
          + w_entity    * 2 per entity found in the content or related names
          + w_intent    * intent match for the section kind and task type
          + w_proximity * 1 if the file was named by the caller
          + 0.3         * interim score
    clamped to [0, 1]
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional, Set

from ..config import ScoringWeights
from .path_security import safe_resolve
from .section_extractor import CodeSection
from .text_analysis import SignalBundle

logger = logging.getLogger(__name__)

ENTITY_MATCH_SCORE = 2.0
INTERIM_SCORE_WEIGHT = 0.3

INTENT_MATCH_SCORE = 0.8
INTENT_MISMATCH_SCORE = 0.3

# Section kinds most useful for each task type
INTENT_SECTION_KINDS = {
    "bug": frozenset(["function", "usage", "comment"]),
    "feature": frozenset(["class", "function", "import"]),
    "improvement": frozenset(["function", "class", "usage"]),
}


def intent_match_score(kind: str, task_type: str) -> float:
    task_type = getattr(task_type, "value", task_type)
    allowed = INTENT_SECTION_KINDS.get(task_type, frozenset())
    return INTENT_MATCH_SCORE if kind in allowed else INTENT_MISMATCH_SCORE


class RelevanceScorer:
    """
    Weighted multi-factor scoring of candidate sections.

    Usage:
        scorer = RelevanceScorer(config.scoring_weights, root, config.exclude_patterns)
        ranked = scorer.rank(sections, signals, "bug", ["src/user.js"])
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        root: Optional[Path] = None,
        exclude_patterns: Iterable[str] = (),
    ):
        self.weights = weights or ScoringWeights()
        self.root = Path(root).resolve() if root is not None else None
        self.exclude_patterns = list(exclude_patterns)

    def named_files(self, files_likely_involved: Iterable[str]) -> Set[str]:
        """Caller-named files in both raw and root-relative resolved form."""
        names = set()
        for file_path in files_likely_involved:
            if not file_path:
                continue
            names.add(file_path)
            if self.root is not None:
                resolved = safe_resolve(file_path, self.root, self.exclude_patterns)
                if resolved is not None and resolved != self.root:
                    names.add(resolved.relative_to(self.root).as_posix())
                    names.add(str(resolved))
        return names

    def score(
        self,
        section: CodeSection,
        signals: SignalBundle,
        task_type: str,
        named_files: Set[str],
    ) -> float:
        content = section.content or ""
        lower_content = content.lower()

        keyword_score = sum(k.weight for k in signals.keywords if k.term and k.term.lower() in lower_content)
        entity_score = sum(
            ENTITY_MATCH_SCORE
            for name in signals.entity_names
            if name and (name in content or name in section.related_entities)
        )
        proximity_score = 1.0 if section.file_path in named_files else 0.0

        score = (
            self.weights.keyword_match * keyword_score
            + self.weights.entity_match * entity_score
            + self.weights.intent_match * intent_match_score(section.kind, task_type)
            + self.weights.file_proximity * proximity_score
            + INTERIM_SCORE_WEIGHT * section.relevance_score
        )
        return max(0.0, min(1.0, score))

    def rank(
        self,
        sections: List[CodeSection],
        signals: SignalBundle,
        task_type: str,
        files_likely_involved: Iterable[str] = (),
    ) -> List[CodeSection]:
        """Rescored copies of the sections, best first (stable for ties)."""
        named = self.named_files(files_likely_involved)
        scored = [
            replace(section, relevance_score=self.score(section, signals, task_type, named))
            for section in sections
        ]
        scored.sort(key=lambda s: s.relevance_score, reverse=True)
        return scored
