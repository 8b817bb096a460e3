from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

from ..errors import ConfigurationError
from ..patterns.models import Pattern

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: dict[str, float] = {"name": 0.5, "tags": 0.3, "description": 0.2}

_NON_WORD = re.compile(r"[^\w\s]+")
_MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> set[str]:
    """Case-folded terms of ``text``, without punctuation, short tokens or stop words."""
    if not text:
        return set()
    cleaned = _NON_WORD.sub(" ", text.casefold()).replace("_", " ")
    return {
        token
        for token in cleaned.split()
        if len(token) >= _MIN_TOKEN_LENGTH and token not in ENGLISH_STOP_WORDS
    }


@dataclass(frozen=True)
class KeywordMatch:
    pattern_id: str
    score: float
    matched_terms: dict[str, tuple[str, ...]] = field(default_factory=dict)


class KeywordSearchEngine:
    """Weighted term overlap between a query and pattern text fields.

    score = (1/|Q|) * sum over query terms t of sum over fields f of
    w_f * [t appears in f]. Field weights sum to 1, so scores lie in [0, 1].
    """

    def __init__(self, field_weights: Mapping[str, float] | None = None) -> None:
        weights = dict(field_weights or DEFAULT_FIELD_WEIGHTS)
        unknown = set(weights) - set(DEFAULT_FIELD_WEIGHTS)
        if unknown:
            raise ConfigurationError(f"Unknown keyword fields: {sorted(unknown)}")
        if any(w < 0 for w in weights.values()):
            raise ConfigurationError("Keyword field weights must not be negative")
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ConfigurationError(
                f"Keyword field weights must sum to 1, got {sum(weights.values()):.6f}"
            )
        self.field_weights = weights

    @staticmethod
    def _field_terms(pattern: Pattern) -> dict[str, set[str]]:
        return {
            "name": tokenize(pattern.name),
            "tags": tokenize(" ".join(pattern.tags)),
            "description": tokenize(pattern.description),
        }

    def score_pattern(self, query_terms: set[str], pattern: Pattern) -> KeywordMatch:
        if not query_terms:
            return KeywordMatch(pattern_id=pattern.id, score=0.0)

        field_terms = self._field_terms(pattern)
        total = 0.0
        matched: dict[str, tuple[str, ...]] = {}
        for name, weight in self.field_weights.items():
            hits = query_terms & field_terms[name]
            if hits:
                matched[name] = tuple(sorted(hits))
                total += weight * len(hits)
        return KeywordMatch(
            pattern_id=pattern.id,
            score=min(1.0, total / len(query_terms)),
            matched_terms=matched,
        )

    def score(self, query: str, patterns: Iterable[Pattern]) -> list[KeywordMatch]:
        """Score every pattern against ``query``; only positive scores are returned,
        ordered by score descending then pattern id."""
        query_terms = tokenize(query)
        if not query_terms:
            logger.debug("Keyword query %r has no searchable terms", query)
            return []

        matches = [m for m in (self.score_pattern(query_terms, p) for p in patterns) if m.score > 0]
        matches.sort(key=lambda m: (-m.score, m.pattern_id))
        logger.debug("Keyword scoring | terms=%s matches=%d", sorted(query_terms), len(matches))
        return matches
