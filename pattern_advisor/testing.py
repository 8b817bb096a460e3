"""
Test doubles shared by the test suite.

Responsibilities:
- Provide a deterministic embedding strategy with scripted failures and delays.
- Build stored embeddings and selectors around that strategy.
"""
from __future__ import annotations

import asyncio

import numpy as np

from .embeddings.config import EmbeddingConfig
from .embeddings.selector import EmbeddingStrategySelector
from .embeddings.store import PatternEmbedding
from .embeddings.strategies import EmbeddingStrategy, StrategyKind

SINGLETON_QUERY = "I need to ensure only one instance of a class exists"

# query -> [1, 0, 0]; Singleton sits next to it, the rest are orthogonal
STUB_VECTORS = {
    SINGLETON_QUERY: [1.0, 0.0, 0.0],
}
STORED_VECTORS = {
    "singleton": [0.9, 0.1, 0.0],
    "factory-method": [0.0, 1.0, 0.0],
    "observer": [0.0, 0.0, 1.0],
}

FAST_CONFIG = EmbeddingConfig(dimension=3, retry_delay=0.0, call_timeout=5.0, batch_timeout=10.0)


class StubStrategy(EmbeddingStrategy):
    """Maps exact texts to fixed vectors; unknown texts embed to zeros.

    ``failures`` are raised, one per call, before any call succeeds.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        dimension: int = 3,
        kind: StrategyKind = StrategyKind.sentence_transformers,
        available: bool = True,
        failures: list[BaseException] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.kind = kind
        self.model = f"stub-{kind.value}"
        self.dimension = dimension
        self.vectors = vectors or {}
        self.available = available
        self.failures = list(failures or [])
        self.delay = delay
        self.calls: list[list[str]] = []
        self.availability_checks = 0

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return [
            np.asarray(self.vectors.get(t, [0.0] * self.dimension), dtype=np.float32)
            for t in texts
        ]


def stored_embeddings(
    vectors: dict[str, list[float]], model: str = "stub-sentence-transformers"
) -> list[PatternEmbedding]:
    return [
        PatternEmbedding(
            pattern_id=pid,
            vector=vec,
            dimension=len(vec),
            model=model,
            strategy="sentence-transformers",
        )
        for pid, vec in vectors.items()
    ]


def make_selector(*strategies: EmbeddingStrategy, config: EmbeddingConfig = FAST_CONFIG, cache=None):
    return EmbeddingStrategySelector(list(strategies), config=config, cache=cache)
