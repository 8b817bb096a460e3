from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .errors import (
    ConfigurationError,
    DeadlineExceededError,
    DimensionMismatchError,
    EmbeddingModelMismatchError,
    PatternAdvisorError,
    PatternNotFoundError,
    ProviderError,
    StorageError,
    ValidationError,
)
from .recommendations.models import (
    EmbeddingsRequest,
    EmbeddingsResponse,
    EmbeddingStats,
    RecommendationRequest,
    RecommendationResponse,
    SearchQuery,
    SearchResult,
    SimilarPattern,
)
from .recommendations.retrieval import PatternRecommender, build_recommender

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[PatternAdvisorError], int]] = [
    (ValidationError, 422),
    (ConfigurationError, 500),
    (ProviderError, 503),
    (DimensionMismatchError, 409),
    (EmbeddingModelMismatchError, 409),
    (StorageError, 503),
    (DeadlineExceededError, 504),
    (PatternNotFoundError, 404),
]


def _status_for(exc: PatternAdvisorError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def get_recommender(request: Request) -> PatternRecommender:
    return request.app.state.recommender


def create_app(recommender: PatternRecommender | None = None) -> FastAPI:
    """Build the API around ``recommender``; one is wired from the
    environment at startup when none is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "recommender", None) is None:
            app.state.recommender = build_recommender()
        yield

    app = FastAPI(title="Design Pattern Advisor API", version="1.0.0", lifespan=lifespan)
    app.state.recommender = recommender

    @app.exception_handler(PatternAdvisorError)
    async def advisor_error_handler(request: Request, exc: PatternAdvisorError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        body = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, ProviderError):
            body["transient"] = exc.transient
        return JSONResponse(status_code=status, content=body)

    # ── Public endpoints ─────────────────────────────────────────────────

    @app.get("/health")
    async def health(request: Request) -> dict:
        recommender = get_recommender(request)
        return {
            "status": "ok",
            "embedding_strategy": recommender.selector.strategy_info(),
        }

    @app.post("/recommendations", response_model=RecommendationResponse)
    async def recommendations(body: RecommendationRequest, request: Request) -> RecommendationResponse:
        return await get_recommender(request).recommend(body)

    @app.post("/search", response_model=list[SearchResult])
    async def search(body: SearchQuery, request: Request) -> list[SearchResult]:
        return await get_recommender(request).search(body)

    @app.get("/patterns/{pattern_id}/similar", response_model=list[SimilarPattern])
    async def similar_patterns(
        pattern_id: str,
        request: Request,
        limit: int = Query(default=5, ge=1, le=50),
    ) -> list[SimilarPattern]:
        recommender = get_recommender(request)
        if await recommender.catalog.get(pattern_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown pattern: {pattern_id}")
        return await recommender.find_similar(pattern_id, limit=limit)

    # ── Embedding endpoints ──────────────────────────────────────────────

    @app.post("/embeddings", response_model=EmbeddingsResponse)
    async def embeddings(body: EmbeddingsRequest, request: Request) -> EmbeddingsResponse:
        batch = await get_recommender(request).generate_embeddings(body.texts, use_cache=body.use_cache)
        return EmbeddingsResponse(
            vectors=[v.tolist() for v in batch.vectors],
            model=batch.model,
            strategy=batch.strategy,
            dimension=batch.dimension,
        )

    @app.get("/embeddings/strategies")
    async def embedding_strategies(request: Request) -> list[dict]:
        return await get_recommender(request).selector.available_strategies()

    @app.get("/embeddings/stats", response_model=EmbeddingStats)
    async def embedding_stats(request: Request) -> EmbeddingStats:
        return await get_recommender(request).embedding_stats()

    @app.get("/cache/stats")
    async def cache_stats(request: Request) -> dict:
        return get_recommender(request).cache_stats()

    return app


app = create_app()
