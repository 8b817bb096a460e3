from __future__ import annotations

from enum import Enum


class PatternAdvisorError(Exception):
    """Parent class for all pattern_advisor exceptions."""

    pass


class ValidationError(PatternAdvisorError, ValueError):
    """Raised when a recommendation or search request is malformed."""

    pass


class ConfigurationError(PatternAdvisorError, ValueError):
    """Raised when matcher or embedding configuration is not valid."""

    pass


class ProviderErrorKind(str, Enum):
    transient = "transient"
    permanent = "permanent"


class ProviderError(PatternAdvisorError):
    """Raised when an embedding provider fails.

    ``kind`` says whether the failure is worth retrying; ``exhausted`` is set
    once a transient failure has used up its retry budget.
    """

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.permanent,
        *,
        exhausted: bool = False,
        attempts: int = 0,
        strategy: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.exhausted = exhausted
        self.attempts = attempts
        self.strategy = strategy

    @property
    def transient(self) -> bool:
        return self.kind is ProviderErrorKind.transient

    def __str__(self) -> str:
        base = super().__str__()
        suffix = f" [{self.kind.value}"
        if self.exhausted:
            suffix += f", exhausted after {self.attempts} attempts"
        return base + suffix + "]"


class DimensionMismatchError(PatternAdvisorError):
    """Raised when a stored embedding and the query embedding differ in size."""

    def __init__(self, expected: int, actual: int, pattern_id: str | None = None) -> None:
        where = f" for pattern {pattern_id!r}" if pattern_id else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: query has {expected}, stored has {actual}"
        )
        self.expected = expected
        self.actual = actual
        self.pattern_id = pattern_id


class EmbeddingModelMismatchError(PatternAdvisorError):
    """Raised when stored embeddings were produced by a different model than the query's."""

    def __init__(self, expected: str, actual: str, pattern_id: str | None = None) -> None:
        where = f" for pattern {pattern_id!r}" if pattern_id else ""
        super().__init__(
            f"Embedding model mismatch{where}: query uses {expected!r}, stored uses {actual!r}"
        )
        self.expected = expected
        self.actual = actual
        self.pattern_id = pattern_id


class StorageError(PatternAdvisorError):
    """Raised when the embedding store is unreachable or returns a corrupt record."""

    pass


class DeadlineExceededError(PatternAdvisorError):
    """Raised when a request runs past its configured deadline."""

    pass


class PatternNotFoundError(PatternAdvisorError, LookupError):
    """Raised when a pattern id is not in the catalog or has no stored embedding."""

    pass
