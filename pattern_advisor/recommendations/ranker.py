"""
Deterministic merge and ranking of semantic and keyword candidate scores.

Both signals are already in [0, 1]. The merged ``final`` score is a weighted
sum (or the max of the two when hybrid blending is off); confidence scales
``final`` by how closely the two signals agree.
"""
from __future__ import annotations

from typing import Mapping, Sequence

from ..patterns.models import Pattern
from ..search.keyword import KeywordMatch
from .models import (
    Alternative,
    CandidateScore,
    DominantSignal,
    ImplementationGuidance,
    Justification,
    Recommendation,
    ScoreBreakdown,
)

HYBRID_AGREEMENT_BAND = 0.2
SINGLE_SIGNAL_FACTOR = 0.6
AGREEMENT_FACTOR = 0.4


def compute_confidence(final: float, semantic: float, keyword: float, both_active: bool) -> float:
    """``final * (0.6 + 0.4 * agreement)`` with ``agreement = 1 - |semantic - keyword|``;
    ``0.6 * final`` when only one signal contributed."""
    if not both_active:
        return SINGLE_SIGNAL_FACTOR * final
    agreement = 1.0 - abs(semantic - keyword)
    return final * (SINGLE_SIGNAL_FACTOR + AGREEMENT_FACTOR * agreement)


def merge_scores(
    semantic: Mapping[str, float],
    keyword: Mapping[str, KeywordMatch],
    semantic_weight: float,
    keyword_weight: float,
    semantic_active: bool = True,
    keyword_active: bool = True,
    hybrid: bool = True,
) -> list[CandidateScore]:
    """Union both candidate sets and score each candidate, sorted by
    ``final`` descending then pattern id ascending."""
    both_active = semantic_active and keyword_active
    candidates: list[CandidateScore] = []

    for pattern_id in set(semantic) | set(keyword):
        s = semantic.get(pattern_id, 0.0) if semantic_active else 0.0
        match = keyword.get(pattern_id) if keyword_active else None
        k = match.score if match is not None else 0.0

        if both_active and hybrid:
            final = semantic_weight * s + keyword_weight * k
        elif both_active:
            final = max(s, k)
        else:
            # a lone signal carries full weight
            final = s if semantic_active else k
        final = min(1.0, max(0.0, final))

        candidates.append(
            CandidateScore(
                pattern_id=pattern_id,
                semantic=s,
                keyword=k,
                final=final,
                confidence=compute_confidence(final, s, k, both_active),
                matched_terms=dict(match.matched_terms) if match is not None else {},
            )
        )

    candidates.sort(key=lambda c: (-c.final, c.pattern_id))
    return candidates


def select_top(
    candidates: Sequence[CandidateScore], min_confidence: float, max_results: int
) -> list[CandidateScore]:
    """Keep candidates at or above ``min_confidence``, in order, up to ``max_results``."""
    return [c for c in candidates if c.confidence >= min_confidence][:max_results]


def dominant_signal(candidate: CandidateScore) -> DominantSignal:
    s, k = candidate.semantic, candidate.keyword
    if s > 0 and k > 0 and abs(s - k) <= HYBRID_AGREEMENT_BAND:
        return DominantSignal.hybrid
    if s >= k:
        return DominantSignal.semantic
    return DominantSignal.keyword


def _format_terms(matched_terms: Mapping[str, Sequence[str]]) -> str:
    terms = sorted({t for field_terms in matched_terms.values() for t in field_terms})
    return ", ".join(f"'{t}'" for t in terms)


def build_justification(
    candidate: CandidateScore,
    pattern: Pattern,
    query: str,
    programming_language: str | None = None,
) -> Justification:
    signal = dominant_signal(candidate)
    if signal is DominantSignal.hybrid:
        primary = (
            f"Semantic similarity of {candidate.semantic:.2f} and keyword relevance of "
            f"{candidate.keyword:.2f} both point to {pattern.name}"
        )
    elif signal is DominantSignal.semantic:
        primary = (
            f"Semantic similarity of {candidate.semantic:.2f} between the problem "
            f"description and {pattern.name}"
        )
    else:
        primary = (
            f"Keyword relevance of {candidate.keyword:.2f} from matching terms "
            f"{_format_terms(candidate.matched_terms)}"
        )

    supporting: list[str] = []
    for field_name in ("name", "tags", "description"):
        hits = candidate.matched_terms.get(field_name)
        if hits:
            supporting.append(
                f"Query terms {', '.join(repr(t) for t in hits)} appear in the pattern "
                f"{field_name}"
            )
    if signal is DominantSignal.keyword and candidate.semantic > 0:
        supporting.append(f"Semantic similarity of {candidate.semantic:.2f}")
    supporting.append(f"{pattern.category.capitalize()} pattern")
    if pattern.complexity:
        supporting.append(f"Complexity: {pattern.complexity}")

    problem_fit = f'{pattern.name} fits the described problem: "{query.strip()}"'
    if programming_language:
        problem_fit += f" in {programming_language}"
    if pattern.use_cases:
        problem_fit += f". Typical uses: {', '.join(pattern.use_cases[:3])}"

    return Justification(
        primary_reason=primary,
        supporting_reasons=supporting,
        dominant_signal=signal,
        problem_fit=problem_fit,
        benefits=list(pattern.benefits),
        drawbacks=list(pattern.drawbacks),
    )


def build_implementation(pattern: Pattern, programming_language: str | None = None) -> ImplementationGuidance:
    """Steps and catalogued code examples, restricted to ``programming_language`` when given."""
    examples = pattern.examples_for(programming_language)
    steps = [f"Locate the code where {pattern.name} should apply"]
    if examples and programming_language:
        steps.append(f"Start from the {examples[0].language} example")
    elif examples:
        steps.append("Start from the example closest to your language")
    elif programming_language:
        steps.append(
            f"No {programming_language} example is catalogued; "
            f"follow the {pattern.name} structure described above"
        )
    else:
        steps.append(f"Follow the {pattern.name} structure described above")
    steps.append("Cover the new structure with unit tests before moving callers onto it")
    return ImplementationGuidance(language=programming_language, steps=steps, examples=examples)


def _alternative_reason(alt: CandidateScore, alt_pattern: Pattern, rec: CandidateScore, rec_pattern: Pattern) -> str:
    gap = rec.final - alt.final
    if alt_pattern.category.lower() == rec_pattern.category.lower():
        relation = f"another {alt_pattern.category} option"
    else:
        relation = f"a {alt_pattern.category} approach instead"
    return f"Scores {gap:.2f} below {rec_pattern.name}; {relation}"


def build_alternatives(
    ranked: Sequence[CandidateScore],
    selected: Sequence[CandidateScore],
    count: int,
) -> list[CandidateScore]:
    """The ``count`` candidates that follow the last selected one in the full
    sorted list, skipping anything already selected."""
    if not selected or count <= 0:
        return []
    chosen = {c.pattern_id for c in selected}
    last_index = max(i for i, c in enumerate(ranked) if c.pattern_id in chosen)
    return [c for c in ranked[last_index + 1:] if c.pattern_id not in chosen][:count]


def build_recommendations(
    ranked: Sequence[CandidateScore],
    selected: Sequence[CandidateScore],
    patterns: Mapping[str, Pattern],
    query: str,
    programming_language: str | None = None,
    alternatives_count: int = 3,
) -> list[Recommendation]:
    """Turn selected candidates into ranked, justified recommendations.

    Candidates whose pattern is missing from ``patterns`` are skipped and
    ranks stay contiguous.
    """
    present = [c for c in selected if c.pattern_id in patterns]
    alternates = [
        c for c in build_alternatives(ranked, present, alternatives_count) if c.pattern_id in patterns
    ]

    recommendations: list[Recommendation] = []
    for position, candidate in enumerate(present, start=1):
        pattern = patterns[candidate.pattern_id]
        recommendations.append(
            Recommendation(
                rank=position,
                pattern=pattern.summary(),
                scores=ScoreBreakdown(
                    semantic=candidate.semantic,
                    keyword=candidate.keyword,
                    final=candidate.final,
                    confidence=candidate.confidence,
                ),
                justification=build_justification(candidate, pattern, query, programming_language),
                implementation=build_implementation(pattern, programming_language),
                alternatives=[
                    Alternative(
                        pattern_id=alt.pattern_id,
                        name=patterns[alt.pattern_id].name,
                        final_score=alt.final,
                        confidence=alt.confidence,
                        reason=_alternative_reason(alt, patterns[alt.pattern_id], candidate, pattern),
                    )
                    for alt in alternates
                ],
            )
        )
    return recommendations
