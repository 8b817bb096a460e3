from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field

from ..patterns.models import CodeExample, PatternSummary


class SearchWeights(BaseModel):
    semantic: float = Field(..., ge=0.0, le=1.0)
    keyword: float = Field(..., ge=0.0, le=1.0)


class RecommendationRequest(BaseModel):
    query: str = Field(..., description="Natural-language description of the design problem")
    categories: list[str] = Field(default_factory=list, description="Restrict to these pattern categories")
    programming_language: str | None = Field(
        default=None, description="Language hint; filters implementation examples and shapes the justification"
    )
    max_results: int | None = Field(default=None, description="Overrides the configured maximum")
    min_confidence: float | None = Field(default=None, description="Overrides the configured minimum")
    weights: SearchWeights | None = None
    use_cache: bool = True


class DominantSignal(str, Enum):
    semantic = "semantic"
    keyword = "keyword"
    hybrid = "hybrid"


@dataclass
class CandidateScore:
    pattern_id: str
    semantic: float = 0.0
    keyword: float = 0.0
    final: float = 0.0
    confidence: float = 0.0
    matched_terms: dict[str, tuple[str, ...]] = field(default_factory=dict)


class ScoreBreakdown(BaseModel):
    semantic: float
    keyword: float
    final: float
    confidence: float


class Justification(BaseModel):
    primary_reason: str
    supporting_reasons: list[str] = Field(default_factory=list)
    dominant_signal: DominantSignal
    problem_fit: str
    benefits: list[str] = Field(default_factory=list)
    drawbacks: list[str] = Field(default_factory=list)


class ImplementationGuidance(BaseModel):
    language: str | None = None
    steps: list[str] = Field(default_factory=list)
    examples: list[CodeExample] = Field(default_factory=list)


class Alternative(BaseModel):
    pattern_id: str
    name: str
    final_score: float
    confidence: float
    reason: str


class Recommendation(BaseModel):
    rank: int = Field(..., ge=1)
    pattern: PatternSummary
    scores: ScoreBreakdown
    justification: Justification
    implementation: ImplementationGuidance
    alternatives: list[Alternative] = Field(default_factory=list)


class RecommendationResponse(BaseModel):
    recommendations: list[Recommendation]
    total_candidates: int
    degraded: bool = False
    strategy: str | None = None
    search_time_ms: float = 0.0


class SearchQuery(BaseModel):
    query: str
    categories: list[str] = Field(default_factory=list)
    limit: int = Field(default=10, description="Maximum number of results")
    threshold: float | None = Field(default=None, description="Overrides the similarity threshold")
    use_cache: bool = True


class SearchMetadata(BaseModel):
    search_time_ms: float
    total_candidates: int
    similarity_method: str


class SearchResult(BaseModel):
    rank: int
    score: float
    pattern: PatternSummary
    metadata: SearchMetadata


class EmbeddingsRequest(BaseModel):
    texts: list[str] = Field(..., min_length=1)
    use_cache: bool = True


class EmbeddingsResponse(BaseModel):
    vectors: list[list[float]]
    model: str
    strategy: str
    dimension: int


class SimilarPattern(BaseModel):
    pattern: PatternSummary
    similarity: float


class EmbeddingStats(BaseModel):
    total: int
    by_strategy: dict[str, int]
    by_model: dict[str, int]
    dimensions: list[int]
