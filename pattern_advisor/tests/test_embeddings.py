from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import openai
import pytest

from pattern_advisor.cache.lru import LRUCache
from pattern_advisor.embeddings.config import EmbeddingConfig
from pattern_advisor.embeddings.selector import EmbeddingStrategySelector, build_strategies, normalize_text
from pattern_advisor.embeddings.strategies import (
    HashingStrategy,
    OpenAIStrategy,
    StrategyKind,
    classify_openai_error,
)
from pattern_advisor.errors import (
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from pattern_advisor.testing import StubStrategy, make_selector

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _transient(message: str = "rate limited") -> ProviderError:
    return ProviderError(message, ProviderErrorKind.transient)


def _permanent(message: str = "bad api key") -> ProviderError:
    return ProviderError(message, ProviderErrorKind.permanent)


# --------- retry and timeouts ---------


@pytest.mark.asyncio
async def test_transient_failures_retried_until_success():
    strategy = StubStrategy({"hello": [1.0, 0.0, 0.0]}, failures=[_transient(), _transient()])
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    config = EmbeddingConfig(dimension=3, retry_attempts=3, retry_delay=0.5)
    selector = EmbeddingStrategySelector([strategy], config=config, sleep=fake_sleep)

    result = await selector.generate_embedding("hello")

    assert len(strategy.calls) == 3
    assert sleeps == [0.5, 0.5]
    np.testing.assert_allclose(result.vector, [1.0, 0.0, 0.0])


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_transient_exhausted_error():
    strategy = StubStrategy(failures=[_transient(), _transient()])
    config = EmbeddingConfig(dimension=3, retry_attempts=2, retry_delay=0.0)
    selector = EmbeddingStrategySelector([strategy], config=config)

    with pytest.raises(ProviderError) as exc_info:
        await selector.generate_embedding("hello")

    err = exc_info.value
    assert err.kind is ProviderErrorKind.transient
    assert err.exhausted is True
    assert err.attempts == 2
    assert len(strategy.calls) == 2


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    strategy = StubStrategy(failures=[_permanent()])
    selector = make_selector(strategy)

    with pytest.raises(ProviderError) as exc_info:
        await selector.generate_embedding("hello")

    assert exc_info.value.kind is ProviderErrorKind.permanent
    assert exc_info.value.exhausted is False
    assert len(strategy.calls) == 1


@pytest.mark.asyncio
async def test_call_timeout_counts_as_transient_failure():
    strategy = StubStrategy(delay=0.2)
    config = EmbeddingConfig(dimension=3, retry_attempts=2, retry_delay=0.0, call_timeout=0.01)
    selector = EmbeddingStrategySelector([strategy], config=config)

    with pytest.raises(ProviderError) as exc_info:
        await selector.generate_embedding("slow text")

    assert exc_info.value.transient
    assert exc_info.value.exhausted
    assert len(strategy.calls) == 2


@pytest.mark.asyncio
async def test_batch_timeout_fails_whole_call():
    strategy = StubStrategy(delay=0.2)
    config = EmbeddingConfig(dimension=3, retry_attempts=5, retry_delay=0.0, call_timeout=1.0, batch_timeout=0.05)
    selector = EmbeddingStrategySelector([strategy], config=config)

    with pytest.raises(ProviderError) as exc_info:
        await selector.generate_embeddings(["a text", "another text"])

    assert exc_info.value.transient
    assert exc_info.value.exhausted


@pytest.mark.asyncio
async def test_wrong_vector_dimension_is_permanent_error():
    strategy = StubStrategy({"hello": [1.0, 0.0]}, dimension=3)
    selector = make_selector(strategy)

    with pytest.raises(ProviderError) as exc_info:
        await selector.generate_embedding("hello")
    assert exc_info.value.kind is ProviderErrorKind.permanent


# --------- batching and caching ---------


@pytest.mark.asyncio
async def test_texts_are_batched_and_returned_in_order():
    vectors = {f"text {i}": [float(i), 1.0, 0.0] for i in range(5)}
    strategy = StubStrategy(vectors)
    config = EmbeddingConfig(dimension=3, batch_size=2, retry_delay=0.0)
    selector = EmbeddingStrategySelector([strategy], config=config)

    batch = await selector.generate_embeddings([f"text {i}" for i in range(5)])

    assert [len(call) for call in strategy.calls] == [2, 2, 1]
    assert [float(v[0]) for v in batch.vectors] == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert batch.strategy == "sentence-transformers"
    assert batch.model == "stub-sentence-transformers"
    assert batch.dimension == 3


@pytest.mark.asyncio
async def test_cache_keyed_by_normalized_text():
    strategy = StubStrategy({"hello world": [1.0, 0.0, 0.0]})
    selector = make_selector(strategy, cache=LRUCache())

    await selector.generate_embedding("hello world")
    await selector.generate_embedding("  hello   world ")

    assert len(strategy.calls) == 1
    assert selector.cache.stats()["hits"] == 1


@pytest.mark.asyncio
async def test_use_cache_false_bypasses_cache():
    strategy = StubStrategy({"hello": [1.0, 0.0, 0.0]})
    selector = make_selector(strategy, cache=LRUCache())

    await selector.generate_embedding("hello", use_cache=False)
    await selector.generate_embedding("hello", use_cache=False)

    assert len(strategy.calls) == 2
    assert len(selector.cache) == 0


@pytest.mark.asyncio
async def test_duplicate_texts_embedded_once():
    strategy = StubStrategy({"same": [0.0, 1.0, 0.0]})
    selector = make_selector(strategy)

    batch = await selector.generate_embeddings(["same", "same", "same "])

    assert strategy.calls == [["same"]]
    assert len(batch) == 3


@pytest.mark.asyncio
async def test_blank_text_rejected():
    selector = make_selector(StubStrategy())
    with pytest.raises(ValidationError):
        await selector.generate_embeddings(["ok", "   "])


def test_normalize_text_collapses_whitespace():
    assert normalize_text("  a \n b\t c ") == "a b c"


# --------- strategy resolution ---------


@pytest.mark.asyncio
async def test_falls_back_to_next_available_strategy():
    preferred = StubStrategy(kind=StrategyKind.sentence_transformers, available=False)
    fallback = StubStrategy({"hi": [0.0, 0.0, 1.0]}, kind=StrategyKind.hashing)
    selector = make_selector(preferred, fallback)

    result = await selector.generate_embedding("hi")
    await selector.generate_embedding("hi", use_cache=False)

    assert result.strategy == "hashing"
    assert preferred.availability_checks == 1
    assert fallback.availability_checks == 1
    assert selector.strategy_info()["name"] == "hashing"


@pytest.mark.asyncio
async def test_no_available_strategy_is_permanent_error():
    selector = make_selector(StubStrategy(available=False))
    with pytest.raises(ProviderError) as exc_info:
        await selector.resolve()
    assert exc_info.value.kind is ProviderErrorKind.permanent
    assert await selector.is_available() is False


@pytest.mark.asyncio
async def test_available_strategies_report():
    preferred = StubStrategy(kind=StrategyKind.sentence_transformers, available=False)
    fallback = StubStrategy(kind=StrategyKind.hashing)
    selector = make_selector(preferred, fallback)
    await selector.resolve()

    report = await selector.available_strategies()

    assert [(r["name"], r["available"], r["active"]) for r in report] == [
        ("sentence-transformers", False, False),
        ("hashing", True, True),
    ]


def test_build_strategies_follows_priority():
    config = EmbeddingConfig(priority=("hashing", "openai"), openai_api_key="sk-test")
    strategies = build_strategies(config)
    assert [s.kind for s in strategies] == [StrategyKind.hashing, StrategyKind.openai]


def test_build_strategies_rejects_unknown_name():
    with pytest.raises(ConfigurationError):
        build_strategies(EmbeddingConfig(priority=("word2vec",)))


def test_embedding_config_rejects_bad_values():
    with pytest.raises(ConfigurationError):
        EmbeddingConfig(batch_size=0)
    with pytest.raises(ConfigurationError):
        EmbeddingConfig(retry_attempts=0)
    with pytest.raises(ConfigurationError):
        EmbeddingConfig(retry_delay=-1.0)


def test_embedding_config_from_env(monkeypatch):
    monkeypatch.setenv("PATTERN_EMBED_BATCH_SIZE", "16")
    monkeypatch.setenv("PATTERN_EMBED_PRIORITY", "hashing")
    monkeypatch.setenv("PATTERN_EMBED_RETRY_DELAY", "not-a-number")

    config = EmbeddingConfig.from_env()

    assert config.batch_size == 16
    assert config.priority == ("hashing",)
    assert config.retry_delay == 1.0


# --------- concrete strategies ---------


@pytest.mark.asyncio
async def test_hashing_strategy_is_deterministic_and_normalized():
    strategy = HashingStrategy(dimension=64)
    first = (await strategy.embed(["ensure a single instance"]))[0]
    second = (await strategy.embed(["ensure a single instance"]))[0]

    assert first.shape == (64,)
    np.testing.assert_allclose(first, second)
    assert np.linalg.norm(first) == pytest.approx(1.0, abs=1e-6)
    assert await strategy.is_available() is True


@pytest.mark.asyncio
async def test_openai_strategy_orders_vectors_by_index():
    client = MagicMock()
    client.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0, 0.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0, 0.0]),
            ]
        )
    )
    strategy = OpenAIStrategy(api_key="", dimension=3, client=client)

    vectors = await strategy.embed(["first", "second"])

    assert [v.tolist() for v in vectors] == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    assert client.embeddings.create.await_args.kwargs["dimensions"] == 3
    assert await strategy.is_available() is True


@pytest.mark.asyncio
async def test_openai_strategy_unavailable_without_key():
    assert await OpenAIStrategy(api_key="").is_available() is False


@pytest.mark.asyncio
async def test_openai_auth_error_becomes_permanent_provider_error():
    client = MagicMock()
    client.embeddings.create = AsyncMock(
        side_effect=openai.AuthenticationError(
            "invalid key", response=httpx.Response(401, request=_REQUEST), body=None
        )
    )
    strategy = OpenAIStrategy(api_key="sk-bad", dimension=3, client=client)

    with pytest.raises(ProviderError) as exc_info:
        await strategy.embed(["text"])
    assert exc_info.value.kind is ProviderErrorKind.permanent


@pytest.mark.parametrize(
    "exc, expected",
    [
        (openai.APITimeoutError(request=_REQUEST), ProviderErrorKind.transient),
        (openai.APIConnectionError(request=_REQUEST), ProviderErrorKind.transient),
        (
            openai.RateLimitError("slow down", response=httpx.Response(429, request=_REQUEST), body=None),
            ProviderErrorKind.transient,
        ),
        (
            openai.InternalServerError("boom", response=httpx.Response(500, request=_REQUEST), body=None),
            ProviderErrorKind.transient,
        ),
        (
            openai.BadRequestError("bad input", response=httpx.Response(400, request=_REQUEST), body=None),
            ProviderErrorKind.permanent,
        ),
        (
            openai.PermissionDeniedError("nope", response=httpx.Response(403, request=_REQUEST), body=None),
            ProviderErrorKind.permanent,
        ),
    ],
)
def test_classify_openai_error(exc, expected):
    assert classify_openai_error(exc) is expected
