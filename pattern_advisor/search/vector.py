from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine

from ..embeddings.store import PatternEmbedding
from ..errors import ConfigurationError, DimensionMismatchError, EmbeddingModelMismatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorMatch:
    pattern_id: str
    similarity: float


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.shape[-1], b.shape[-1])
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class VectorSimilarityEngine:
    def __init__(self, similarity_threshold: float = 0.3) -> None:
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ConfigurationError(f"similarity_threshold must be in [0, 1], got {similarity_threshold}")
        self.similarity_threshold = similarity_threshold

    def rank(
        self,
        query_vector: np.ndarray,
        embeddings: Sequence[PatternEmbedding],
        top_k: int | None = None,
        threshold: float | None = None,
        model: str | None = None,
    ) -> list[VectorMatch]:
        """Rank stored embeddings by cosine similarity to ``query_vector``.

        Every stored embedding must match the query dimension and, when
        ``model`` is given, have been produced by that model.
        Negative similarities are clamped to 0 so scores stay in [0, 1].
        Candidates under the threshold are dropped; the rest are ordered by
        similarity descending, then pattern id ascending.
        """
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        if not embeddings:
            return []

        for embedding in embeddings:
            if embedding.dimension != query.shape[0]:
                raise DimensionMismatchError(query.shape[0], embedding.dimension, embedding.pattern_id)
            if model is not None and embedding.model != model:
                raise EmbeddingModelMismatchError(model, embedding.model, embedding.pattern_id)

        cutoff = self.similarity_threshold if threshold is None else threshold
        matrix = np.vstack([e.vector for e in embeddings])
        # zero-norm rows come back as 0 from sklearn's normalisation
        scores = _pairwise_cosine(query.reshape(1, -1), matrix).ravel()
        scores = np.clip(scores, 0.0, 1.0)

        matches = [
            VectorMatch(pattern_id=e.pattern_id, similarity=float(s))
            for e, s in zip(embeddings, scores)
            if s >= cutoff
        ]
        matches.sort(key=lambda m: (-m.similarity, m.pattern_id))

        logger.debug(
            "Vector ranking | candidates=%d above_threshold=%d threshold=%.3f",
            len(embeddings),
            len(matches),
            cutoff,
        )
        return matches[:top_k] if top_k is not None else matches
