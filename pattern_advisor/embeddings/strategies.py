"""
Interchangeable embedding providers.

Every provider implements the same small capability interface
(``embed`` / ``is_available``) and carries its own identity (kind, model,
dimension) so stored vectors can always be traced back to what produced
them. Provider failures are raised as ``ProviderError`` already classified
as transient or permanent; retry policy lives in the selector.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import openai
from openai import AsyncOpenAI
from sklearn.feature_extraction.text import HashingVectorizer

from ..errors import ProviderError, ProviderErrorKind

try:
    from sentence_transformers import SentenceTransformer
    _HAS_ST = True
except ImportError:
    _HAS_ST = False

logger = logging.getLogger(__name__)


class StrategyKind(str, Enum):
    sentence_transformers = "sentence-transformers"
    openai = "openai"
    hashing = "hashing"


@dataclass(frozen=True, eq=False)
class EmbeddingResult:
    vector: np.ndarray
    model: str
    strategy: str
    dimension: int


@dataclass(frozen=True, eq=False)
class EmbeddingBatch:
    vectors: list[np.ndarray] = field(default_factory=list)
    model: str = ""
    strategy: str = ""
    dimension: int = 0

    def __len__(self) -> int:
        return len(self.vectors)


class EmbeddingStrategy(ABC):
    kind: StrategyKind
    model: str
    dimension: int

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Embed ``texts`` in order; one vector of ``dimension`` floats per text."""

    @abstractmethod
    async def is_available(self) -> bool:
        ...

    @property
    def name(self) -> str:
        return self.kind.value

    def describe(self) -> dict:
        return {"name": self.name, "model": self.model, "dimension": self.dimension}


class SentenceTransformerStrategy(EmbeddingStrategy):
    """Local sentence-transformers model; preferred when installed."""

    kind = StrategyKind.sentence_transformers

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", dimension: int = 384) -> None:
        self.model = model_name
        self.dimension = dimension
        self._model = None
        self._load_failed = False

    def _load(self):
        if self._model is None and not self._load_failed:
            try:
                self._model = SentenceTransformer(self.model)
            except Exception:
                logger.warning("Could not load sentence-transformers model %s", self.model, exc_info=True)
                self._load_failed = True
                return None
            loaded_dim = self._model.get_sentence_embedding_dimension()
            if loaded_dim:
                self.dimension = int(loaded_dim)
        return self._model

    async def is_available(self) -> bool:
        if not _HAS_ST:
            return False
        return await asyncio.to_thread(self._load) is not None

    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        model = await asyncio.to_thread(self._load) if _HAS_ST else None
        if model is None:
            raise ProviderError(
                f"sentence-transformers model {self.model} is not loaded",
                ProviderErrorKind.permanent,
                strategy=self.name,
            )
        try:
            matrix = await asyncio.to_thread(
                model.encode,
                texts,
                batch_size=max(len(texts), 1),
                show_progress_bar=False,
                normalize_embeddings=True,
            )
        except (TypeError, ValueError) as exc:
            raise ProviderError(str(exc), ProviderErrorKind.permanent, strategy=self.name) from exc
        except (MemoryError, RuntimeError) as exc:
            raise ProviderError(str(exc), ProviderErrorKind.transient, strategy=self.name) from exc
        return [np.asarray(row, dtype=np.float32) for row in matrix]


_TRANSIENT_OPENAI_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)
_PERMANENT_OPENAI_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
)


def classify_openai_error(exc: Exception) -> ProviderErrorKind:
    if isinstance(exc, _TRANSIENT_OPENAI_ERRORS):
        return ProviderErrorKind.transient
    if isinstance(exc, _PERMANENT_OPENAI_ERRORS):
        return ProviderErrorKind.permanent
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return ProviderErrorKind.transient
    return ProviderErrorKind.permanent


class OpenAIStrategy(EmbeddingStrategy):
    """Remote embeddings through the OpenAI API."""

    kind = StrategyKind.openai

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimension: int = 384,
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.dimension = dimension
        self._api_key = api_key
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            # retries are owned by the selector
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    async def is_available(self) -> bool:
        return bool(self._api_key) or self._client is not None

    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        try:
            resp = await self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self.dimension,
            )
        except openai.OpenAIError as exc:
            raise ProviderError(str(exc), classify_openai_error(exc), strategy=self.name) from exc

        data = sorted(resp.data or [], key=lambda item: item.index)
        if len(data) != len(texts):
            raise ProviderError(
                f"OpenAI returned {len(data)} embeddings for {len(texts)} inputs",
                ProviderErrorKind.permanent,
                strategy=self.name,
            )
        return [np.asarray(item.embedding, dtype=np.float32) for item in data]


class HashingStrategy(EmbeddingStrategy):
    """Offline hashed bag-of-words vectors; always available, fully deterministic."""

    kind = StrategyKind.hashing

    def __init__(self, dimension: int = 384) -> None:
        self.model = f"hashing-{dimension}"
        self.dimension = dimension
        self._vectorizer = HashingVectorizer(
            n_features=dimension,
            alternate_sign=False,
            norm="l2",
            stop_words="english",
            lowercase=True,
        )

    async def is_available(self) -> bool:
        return True

    async def embed(self, texts: list[str]) -> list[np.ndarray]:
        try:
            matrix = self._vectorizer.transform(texts).toarray().astype(np.float32)
        except (TypeError, ValueError) as exc:
            raise ProviderError(str(exc), ProviderErrorKind.permanent, strategy=self.name) from exc
        return [row for row in matrix]
