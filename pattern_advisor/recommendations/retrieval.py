from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from typing import Sequence

import pandas as pd

from ..cache.lru import LRUCache
from ..embeddings.config import EmbeddingConfig
from ..embeddings.selector import EmbeddingStrategySelector
from ..embeddings.store import EmbeddingStore, NpzEmbeddingStore
from ..embeddings.strategies import EmbeddingBatch
from ..errors import (
    DeadlineExceededError,
    PatternNotFoundError,
    ProviderError,
    StorageError,
    ValidationError,
)
from ..patterns.catalog import PatternCatalog, load_catalog
from ..patterns.models import Pattern
from ..search.keyword import KeywordMatch, KeywordSearchEngine
from ..search.vector import VectorSimilarityEngine
from .config import DEFAULT_MATCHER_CONFIG, MatcherConfig, check_weights
from .models import (
    EmbeddingStats,
    Recommendation,
    RecommendationRequest,
    RecommendationResponse,
    SearchMetadata,
    SearchQuery,
    SearchResult,
    SimilarPattern,
)
from .ranker import build_recommendations, merge_scores, select_top

_module_logger = logging.getLogger(__name__)


class PatternRecommender:
    """Hybrid semantic + keyword design-pattern recommender.

    Every collaborator is passed in explicitly; ``build_recommender`` wires
    the defaults. Recommendation requests only read from the catalog and the
    embedding store.
    """

    def __init__(
        self,
        catalog: PatternCatalog,
        store: EmbeddingStore,
        selector: EmbeddingStrategySelector,
        config: MatcherConfig = DEFAULT_MATCHER_CONFIG,
        keyword_engine: KeywordSearchEngine | None = None,
        vector_engine: VectorSimilarityEngine | None = None,
        result_cache: LRUCache | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.selector = selector
        self.config = config
        self.keyword_engine = keyword_engine or KeywordSearchEngine()
        self.vector_engine = vector_engine or VectorSimilarityEngine(config.similarity_threshold)
        self.result_cache = result_cache
        self.logger = logger or _module_logger

    # --------- recommendations ---------
    async def find_matching_patterns(self, request: RecommendationRequest | str) -> list[Recommendation]:
        """Ranked recommendations for a problem description.

        An empty list means the pipeline ran and nothing cleared the
        confidence bar; every failure raises instead.
        """
        response = await self.recommend(request)
        return response.recommendations

    async def recommend(self, request: RecommendationRequest | str) -> RecommendationResponse:
        if isinstance(request, str):
            request = RecommendationRequest(query=request)
        max_results, min_confidence = self._validate_request(request)
        semantic_weight, keyword_weight = self._resolve_weights(request)

        cache_key = None
        if self.result_cache is not None and self.config.result_cache_enabled and request.use_cache:
            cache_key = LRUCache.make_key({"request": request.model_dump(exclude={"use_cache"})})
            cached = self.result_cache.get(cache_key)
            if cached is not None:
                self.logger.debug("Recommendation cache hit for %r", request.query)
                return cached.model_copy(deep=True)

        response = await self._with_deadline(
            self._recommend(request, max_results, min_confidence, semantic_weight, keyword_weight),
            "recommendation",
        )

        if cache_key is not None and not response.degraded:
            self.result_cache.set(cache_key, response.model_copy(deep=True))
        return response

    def _validate_request(self, request: RecommendationRequest) -> tuple[int, float]:
        if not request.query or not request.query.strip():
            raise ValidationError("query must not be empty")
        max_results = self.config.max_results if request.max_results is None else request.max_results
        if max_results <= 0:
            raise ValidationError(f"max_results must be positive, got {max_results}")
        min_confidence = self.config.min_confidence if request.min_confidence is None else request.min_confidence
        if not 0.0 <= min_confidence <= 1.0:
            raise ValidationError(f"min_confidence must be in [0, 1], got {min_confidence}")
        return max_results, min_confidence

    def _resolve_weights(self, request: RecommendationRequest) -> tuple[float, float]:
        if request.weights is None:
            return self.config.semantic_weight, self.config.keyword_weight
        check_weights(request.weights.semantic, request.weights.keyword)
        return request.weights.semantic, request.weights.keyword

    async def _with_deadline(self, coro, operation: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.config.request_timeout)
        except asyncio.TimeoutError:
            raise DeadlineExceededError(
                f"{operation} did not finish within {self.config.request_timeout:.1f}s"
            ) from None

    async def _recommend(
        self,
        request: RecommendationRequest,
        max_results: int,
        min_confidence: float,
        semantic_weight: float,
        keyword_weight: float,
    ) -> RecommendationResponse:
        start_time = time.perf_counter()
        patterns = await self._candidate_patterns(request.categories)
        by_id = {p.id: p for p in patterns}

        use_semantic = self.config.use_semantic_search
        use_keyword = self.config.use_keyword_search

        # both engines run to completion before either result is inspected
        semantic_result, keyword_result = await asyncio.gather(
            self._semantic_scores(request.query, by_id, use_cache=request.use_cache) if use_semantic else _nothing(),
            self._keyword_scores(request.query, patterns) if use_keyword else _nothing(),
            return_exceptions=True,
        )

        degraded = False
        semantic_scores: dict[str, float] = {}
        if isinstance(semantic_result, BaseException):
            if not self._can_degrade(semantic_result, keyword_result):
                raise semantic_result
            self.logger.warning(
                "Semantic search unavailable (%s); ranking %r on keywords only",
                semantic_result,
                request.query,
            )
            degraded = True
        elif semantic_result is not None:
            semantic_scores = semantic_result

        if isinstance(keyword_result, BaseException):
            raise keyword_result
        keyword_scores: dict[str, KeywordMatch] = keyword_result or {}

        ranked = merge_scores(
            semantic_scores,
            keyword_scores,
            semantic_weight,
            keyword_weight,
            semantic_active=use_semantic and not degraded,
            keyword_active=use_keyword,
            hybrid=self.config.use_hybrid_search,
        )
        selected = select_top(ranked, min_confidence, max_results)
        recommendations = build_recommendations(
            ranked,
            selected,
            by_id,
            request.query,
            request.programming_language,
            self.config.alternatives_count,
        )

        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 1)
        strategy = self.selector.strategy_info() if use_semantic and not degraded else None
        self.logger.info(
            "Recommendations | candidates=%d returned=%d degraded=%s elapsed_ms=%.1f",
            len(ranked),
            len(recommendations),
            degraded,
            elapsed_ms,
        )
        return RecommendationResponse(
            recommendations=recommendations,
            total_candidates=len(ranked),
            degraded=degraded,
            strategy=strategy["name"] if strategy else None,
            search_time_ms=elapsed_ms,
        )

    def _can_degrade(self, semantic_error: BaseException, keyword_result: object) -> bool:
        return (
            isinstance(semantic_error, ProviderError)
            and self.config.allow_keyword_fallback
            and self.config.use_keyword_search
            and not isinstance(keyword_result, BaseException)
        )

    async def _candidate_patterns(self, categories: Sequence[str]) -> list[Pattern]:
        if categories:
            return await self.catalog.by_categories(categories)
        return await self.catalog.all()

    async def _semantic_scores(
        self,
        query: str,
        patterns: dict[str, Pattern],
        use_cache: bool = True,
        threshold: float | None = None,
        top_k: int | None = None,
    ) -> dict[str, float]:
        query_embedding = await self.selector.generate_embedding(query, use_cache=use_cache)
        embeddings = [e for e in await self.store.list_all() if e.pattern_id in patterns]
        if patterns and not embeddings:
            raise StorageError(
                f"No stored embeddings for any of the {len(patterns)} candidate patterns; "
                "run the precompute job first"
            )
        matches = self.vector_engine.rank(
            query_embedding.vector,
            embeddings,
            top_k=top_k,
            threshold=threshold,
            model=query_embedding.model,
        )
        return {m.pattern_id: m.similarity for m in matches}

    async def _keyword_scores(self, query: str, patterns: list[Pattern]) -> dict[str, KeywordMatch]:
        matches = await asyncio.to_thread(self.keyword_engine.score, query, patterns)
        return {m.pattern_id: m for m in matches}

    # --------- search ---------
    async def search(self, query: SearchQuery | str) -> list[SearchResult]:
        """Semantic vector search over stored pattern embeddings."""
        if isinstance(query, str):
            query = SearchQuery(query=query)
        if not query.query or not query.query.strip():
            raise ValidationError("query must not be empty")
        if query.limit <= 0:
            raise ValidationError(f"limit must be positive, got {query.limit}")
        if query.threshold is not None and not 0.0 <= query.threshold <= 1.0:
            raise ValidationError(f"threshold must be in [0, 1], got {query.threshold}")
        return await self._with_deadline(self._search(query), "search")

    async def _search(self, query: SearchQuery) -> list[SearchResult]:
        start_time = time.perf_counter()
        patterns = await self._candidate_patterns(query.categories)
        by_id = {p.id: p for p in patterns}

        method = "semantic"
        if self.config.use_semantic_search:
            try:
                scores = await self._semantic_scores(
                    query.query, by_id, use_cache=query.use_cache, threshold=query.threshold, top_k=query.limit
                )
            except ProviderError as exc:
                if not (self.config.allow_keyword_fallback and self.config.use_keyword_search):
                    raise
                self.logger.warning("Semantic search unavailable (%s); falling back to keyword search", exc)
                method = "keyword"
        else:
            method = "keyword"

        if method == "keyword":
            keyword_matches = await self._keyword_scores(query.query, patterns)
            cutoff = query.threshold or 0.0
            scores = {pid: m.score for pid, m in keyword_matches.items() if m.score >= cutoff}

        ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[: query.limit]
        metadata = SearchMetadata(
            search_time_ms=round((time.perf_counter() - start_time) * 1000, 1),
            total_candidates=len(patterns),
            similarity_method=method,
        )
        return [
            SearchResult(rank=i, score=score, pattern=by_id[pid].summary(), metadata=metadata)
            for i, (pid, score) in enumerate(ordered, start=1)
        ]

    # --------- embeddings ---------
    async def generate_embeddings(self, texts: Sequence[str], use_cache: bool = True) -> EmbeddingBatch:
        if not texts:
            raise ValidationError("texts must not be empty")
        return await self.selector.generate_embeddings(list(texts), use_cache=use_cache)

    async def find_similar(self, pattern_id: str, limit: int = 5) -> list[SimilarPattern]:
        """Patterns whose stored embeddings are closest to ``pattern_id``'s own."""
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        target = await self.store.get(pattern_id)
        if target is None:
            raise PatternNotFoundError(f"No stored embedding for pattern {pattern_id!r}")

        others = [e for e in await self.store.list_all() if e.pattern_id != pattern_id]
        matches = self.vector_engine.rank(
            target.vector, others, top_k=limit, threshold=0.0, model=target.model
        )
        patterns = {p.id: p for p in await self.catalog.get_many([m.pattern_id for m in matches])}
        return [
            SimilarPattern(pattern=patterns[m.pattern_id].summary(), similarity=m.similarity)
            for m in matches
            if m.pattern_id in patterns
        ]

    async def embedding_stats(self) -> EmbeddingStats:
        embeddings = await self.store.list_all()
        if not embeddings:
            return EmbeddingStats(total=0, by_strategy={}, by_model={}, dimensions=[])
        df = pd.DataFrame([e.metadata() for e in embeddings])
        return EmbeddingStats(
            total=len(df),
            by_strategy={k: int(v) for k, v in df["strategy"].value_counts().items()},
            by_model={k: int(v) for k, v in df["model"].value_counts().items()},
            dimensions=sorted(int(d) for d in df["dimension"].unique()),
        )

    def cache_stats(self) -> dict:
        return {
            "embeddings": self.selector.cache.stats() if self.selector.cache else None,
            "results": self.result_cache.stats() if self.result_cache else None,
        }


async def _nothing() -> None:
    return None


def build_recommender(
    embedding_config: EmbeddingConfig | None = None,
    matcher_config: MatcherConfig | None = None,
    catalog: PatternCatalog | None = None,
    store: EmbeddingStore | None = None,
    logger: logging.Logger | None = None,
) -> PatternRecommender:
    """Wire a recommender from configuration (environment by default)."""
    embedding_config = embedding_config or EmbeddingConfig.from_env()
    matcher_config = matcher_config or MatcherConfig.from_env()
    selector = EmbeddingStrategySelector.from_config(embedding_config, logger=logger)
    result_cache = None
    if matcher_config.result_cache_enabled:
        result_cache = LRUCache(max_size=embedding_config.cache_size, ttl_seconds=embedding_config.cache_ttl)

    _module_logger.info(
        "Building recommender | matcher=%s embedding_priority=%s",
        asdict(matcher_config),
        embedding_config.priority,
    )
    return PatternRecommender(
        catalog=catalog or load_catalog(),
        store=store or NpzEmbeddingStore(embedding_config.embeddings_path),
        selector=selector,
        config=matcher_config,
        result_cache=result_cache,
        logger=logger,
    )
