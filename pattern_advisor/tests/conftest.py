from __future__ import annotations

import pytest

from pattern_advisor.embeddings.store import InMemoryEmbeddingStore, PatternEmbedding
from pattern_advisor.embeddings.strategies import EmbeddingStrategy
from pattern_advisor.patterns.catalog import load_catalog
from pattern_advisor.recommendations.config import MatcherConfig
from pattern_advisor.recommendations.retrieval import PatternRecommender
from pattern_advisor.testing import (
    STORED_VECTORS,
    STUB_VECTORS,
    StubStrategy,
    make_selector,
    stored_embeddings,
)


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def make_recommender(catalog):
    def _make(
        strategy: EmbeddingStrategy | None = None,
        embeddings: list[PatternEmbedding] | None = None,
        config: MatcherConfig | None = None,
        result_cache=None,
    ) -> PatternRecommender:
        strategy = strategy or StubStrategy(STUB_VECTORS)
        store = InMemoryEmbeddingStore(
            stored_embeddings(STORED_VECTORS) if embeddings is None else embeddings
        )
        return PatternRecommender(
            catalog=catalog,
            store=store,
            selector=make_selector(strategy),
            config=config or MatcherConfig(),
            result_cache=result_cache,
        )

    return _make
