from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

import numpy as np

from ..cache.lru import LRUCache
from ..errors import ConfigurationError, ProviderError, ProviderErrorKind, ValidationError
from .config import DEFAULT_EMBEDDING_CONFIG, EmbeddingConfig
from .strategies import (
    EmbeddingBatch,
    EmbeddingResult,
    EmbeddingStrategy,
    HashingStrategy,
    OpenAIStrategy,
    SentenceTransformerStrategy,
    StrategyKind,
)

_module_logger = logging.getLogger(__name__)


def build_strategies(config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG) -> list[EmbeddingStrategy]:
    """Instantiate the configured providers in priority order."""
    factories: dict[StrategyKind, Callable[[], EmbeddingStrategy]] = {
        StrategyKind.sentence_transformers: lambda: SentenceTransformerStrategy(
            config.model_name, config.dimension
        ),
        StrategyKind.openai: lambda: OpenAIStrategy(
            config.openai_api_key,
            model=config.openai_model,
            dimension=config.dimension,
            timeout=config.call_timeout,
        ),
        StrategyKind.hashing: lambda: HashingStrategy(config.dimension),
    }
    strategies: list[EmbeddingStrategy] = []
    for name in config.priority:
        try:
            kind = StrategyKind(name)
        except ValueError:
            raise ConfigurationError(
                f"Unknown embedding strategy {name!r}; expected one of {[k.value for k in StrategyKind]}"
            ) from None
        strategies.append(factories[kind]())
    return strategies


def normalize_text(text: str) -> str:
    return " ".join(text.split())


class EmbeddingStrategySelector:
    """Chooses one embedding provider and drives it.

    The provider list is probed in order, once per selector; the first
    available provider is used for every later call. Calls are chunked into
    batches, each batch retried on transient failures, and vectors are
    memoized per (normalized text, model) unless the caller opts out.
    """

    def __init__(
        self,
        strategies: Sequence[EmbeddingStrategy],
        config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
        cache: LRUCache | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not strategies:
            raise ConfigurationError("At least one embedding strategy is required")
        self.strategies = list(strategies)
        self.config = config
        self.cache = cache
        self.logger = logger or _module_logger
        self._sleep = sleep
        self._availability: dict[StrategyKind, bool] = {}
        self._active: EmbeddingStrategy | None = None
        self._resolved = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
        cache: LRUCache | None = None,
        logger: logging.Logger | None = None,
    ) -> "EmbeddingStrategySelector":
        if cache is None and config.cache_enabled:
            cache = LRUCache(max_size=config.cache_size, ttl_seconds=config.cache_ttl)
        return cls(build_strategies(config), config=config, cache=cache, logger=logger)

    # --------- strategy resolution ---------
    async def _probe(self, strategy: EmbeddingStrategy) -> bool:
        if strategy.kind in self._availability:
            return self._availability[strategy.kind]
        try:
            available = bool(
                await asyncio.wait_for(strategy.is_available(), timeout=self.config.call_timeout)
            )
        except Exception:
            self.logger.warning("Availability probe for %s failed", strategy.name, exc_info=True)
            available = False
        self._availability[strategy.kind] = available
        return available

    async def resolve(self) -> EmbeddingStrategy:
        async with self._lock:
            if not self._resolved:
                for strategy in self.strategies:
                    if await self._probe(strategy):
                        self._active = strategy
                        break
                self._resolved = True
                if self._active is not None:
                    if self._active is not self.strategies[0]:
                        self.logger.warning(
                            "Preferred embedding strategy %s unavailable; falling back to %s",
                            self.strategies[0].name,
                            self._active.name,
                        )
                    self.logger.info(
                        "Using %s embedding strategy (model=%s, dimension=%d)",
                        self._active.name,
                        self._active.model,
                        self._active.dimension,
                    )
        if self._active is None:
            raise ProviderError(
                "No embedding strategy available (tried: %s)" % ", ".join(s.name for s in self.strategies),
                ProviderErrorKind.permanent,
            )
        return self._active

    async def is_available(self) -> bool:
        try:
            await self.resolve()
        except ProviderError:
            return False
        return True

    async def available_strategies(self) -> list[dict]:
        report = []
        for strategy in self.strategies:
            info = strategy.describe()
            info["available"] = await self._probe(strategy)
            info["active"] = strategy is self._active
            report.append(info)
        return report

    def strategy_info(self) -> dict | None:
        return self._active.describe() if self._active else None

    # --------- generation ---------
    async def generate_embedding(self, text: str, use_cache: bool = True) -> EmbeddingResult:
        batch = await self.generate_embeddings([text], use_cache=use_cache)
        return EmbeddingResult(
            vector=batch.vectors[0],
            model=batch.model,
            strategy=batch.strategy,
            dimension=batch.dimension,
        )

    async def generate_embeddings(
        self,
        texts: Sequence[str],
        use_cache: bool = True,
        batch_size: int | None = None,
    ) -> EmbeddingBatch:
        """Embed ``texts`` in order.

        Either every text gets a vector or the call raises; a batch that
        exhausts its retries fails the whole call.
        """
        for text in texts:
            if not isinstance(text, str) or not text.strip():
                raise ValidationError("Cannot embed an empty text")

        strategy = await self.resolve()
        cache = self.cache if (use_cache and self.config.cache_enabled) else None

        vectors: list[np.ndarray | None] = [None] * len(texts)
        pending: dict[str, list[int]] = {}
        cache_hits = 0
        for i, text in enumerate(texts):
            normalized = normalize_text(text)
            if cache is not None:
                cached = cache.get(self._cache_key(strategy, normalized))
                if cached is not None:
                    vectors[i] = cached
                    cache_hits += 1
                    continue
            pending.setdefault(normalized, []).append(i)

        unique_texts = list(pending)
        size = batch_size or self.config.batch_size
        for start in range(0, len(unique_texts), size):
            batch_texts = unique_texts[start:start + size]
            batch_vectors = await self._embed_batch(strategy, batch_texts)
            for text, vector in zip(batch_texts, batch_vectors):
                vector = self._check_vector(strategy, vector)
                if cache is not None:
                    cache.set(self._cache_key(strategy, text), vector)
                for i in pending[text]:
                    vectors[i] = vector

        self.logger.debug(
            "Embedded %d texts via %s | cache_hits=%d generated_unique=%d",
            len(texts),
            strategy.name,
            cache_hits,
            len(unique_texts),
        )
        return EmbeddingBatch(
            vectors=[v for v in vectors if v is not None],
            model=strategy.model,
            strategy=strategy.name,
            dimension=strategy.dimension,
        )

    @staticmethod
    def _cache_key(strategy: EmbeddingStrategy, normalized: str) -> str:
        return LRUCache.make_key({"model": strategy.model, "text": normalized})

    @staticmethod
    def _check_vector(strategy: EmbeddingStrategy, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != strategy.dimension:
            raise ProviderError(
                f"{strategy.name} returned a vector of shape {vector.shape}, expected ({strategy.dimension},)",
                ProviderErrorKind.permanent,
                strategy=strategy.name,
            )
        vector.setflags(write=False)
        return vector

    async def _embed_batch(self, strategy: EmbeddingStrategy, texts: list[str]) -> list[np.ndarray]:
        try:
            return await asyncio.wait_for(
                self._embed_with_retry(strategy, texts),
                timeout=self.config.batch_timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(
                f"Embedding batch of {len(texts)} texts timed out after {self.config.batch_timeout:.1f}s",
                ProviderErrorKind.transient,
                exhausted=True,
                strategy=strategy.name,
            ) from None

    async def _embed_with_retry(self, strategy: EmbeddingStrategy, texts: list[str]) -> list[np.ndarray]:
        attempts = self.config.retry_attempts
        last_error: ProviderError | None = None

        for attempt in range(1, attempts + 1):
            try:
                vectors = await asyncio.wait_for(strategy.embed(texts), timeout=self.config.call_timeout)
            except asyncio.TimeoutError:
                last_error = ProviderError(
                    f"{strategy.name} call timed out after {self.config.call_timeout:.1f}s",
                    ProviderErrorKind.transient,
                    strategy=strategy.name,
                )
            except ProviderError as exc:
                if not exc.transient:
                    self.logger.error("Non-retryable embedding error from %s: %s", strategy.name, exc)
                    raise
                last_error = exc
            else:
                if len(vectors) != len(texts):
                    raise ProviderError(
                        f"{strategy.name} returned {len(vectors)} vectors for {len(texts)} texts",
                        ProviderErrorKind.permanent,
                        strategy=strategy.name,
                    )
                return vectors

            if attempt < attempts:
                self.logger.warning(
                    "Embedding attempt %d/%d via %s failed: %s | retrying in %.2fs",
                    attempt,
                    attempts,
                    strategy.name,
                    last_error,
                    self.config.retry_delay,
                )
                await self._sleep(self.config.retry_delay)

        self.logger.error("Embedding retries exhausted (%d) via %s: %s", attempts, strategy.name, last_error)
        raise ProviderError(
            f"Embedding failed after {attempts} attempts: {last_error}",
            ProviderErrorKind.transient,
            exhausted=True,
            attempts=attempts,
            strategy=strategy.name,
        ) from last_error
