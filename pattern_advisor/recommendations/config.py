from __future__ import annotations

from dataclasses import dataclass, fields

from ..errors import ConfigurationError
from ..settings import env_bool, env_float, env_int

WEIGHT_TOLERANCE = 1e-6


def check_weights(semantic_weight: float, keyword_weight: float) -> None:
    """Raise ``ConfigurationError`` unless both weights are in [0, 1] and sum to 1."""
    for name, value in (("semantic_weight", semantic_weight), ("keyword_weight", keyword_weight)):
        if not 0.0 <= value <= 1.0:
            raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
    if abs(semantic_weight + keyword_weight - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigurationError(
            f"semantic_weight + keyword_weight must equal 1, got {semantic_weight + keyword_weight:.6f}"
        )


@dataclass(frozen=True)
class MatcherConfig:
    max_results: int = 5
    min_confidence: float = 0.3
    similarity_threshold: float = 0.3
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    use_semantic_search: bool = True
    use_keyword_search: bool = True
    use_hybrid_search: bool = True
    # rank keyword-only when the embedding provider fails
    allow_keyword_fallback: bool = False
    alternatives_count: int = 3
    request_timeout: float = 30.0  # seconds
    result_cache_enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_results <= 0:
            raise ConfigurationError(f"max_results must be positive, got {self.max_results}")
        if self.alternatives_count < 0:
            raise ConfigurationError(f"alternatives_count must not be negative, got {self.alternatives_count}")
        for name in ("min_confidence", "similarity_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
        check_weights(self.semantic_weight, self.keyword_weight)
        if not (self.use_semantic_search or self.use_keyword_search):
            raise ConfigurationError("At least one of semantic or keyword search must be enabled")
        if self.request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be positive, got {self.request_timeout}")

    @classmethod
    def from_env(cls) -> "MatcherConfig":
        defaults = {f.name: f.default for f in fields(cls)}
        return cls(
            max_results=env_int("PATTERN_MAX_RESULTS", defaults["max_results"]),
            min_confidence=env_float("PATTERN_MIN_CONFIDENCE", defaults["min_confidence"]),
            similarity_threshold=env_float("PATTERN_SIMILARITY_THRESHOLD", defaults["similarity_threshold"]),
            semantic_weight=env_float("PATTERN_SEMANTIC_WEIGHT", defaults["semantic_weight"]),
            keyword_weight=env_float("PATTERN_KEYWORD_WEIGHT", defaults["keyword_weight"]),
            use_semantic_search=env_bool("PATTERN_USE_SEMANTIC_SEARCH", defaults["use_semantic_search"]),
            use_keyword_search=env_bool("PATTERN_USE_KEYWORD_SEARCH", defaults["use_keyword_search"]),
            use_hybrid_search=env_bool("PATTERN_USE_HYBRID_SEARCH", defaults["use_hybrid_search"]),
            allow_keyword_fallback=env_bool("PATTERN_ALLOW_KEYWORD_FALLBACK", defaults["allow_keyword_fallback"]),
            alternatives_count=env_int("PATTERN_ALTERNATIVES_COUNT", defaults["alternatives_count"]),
            request_timeout=env_float("PATTERN_REQUEST_TIMEOUT", defaults["request_timeout"]),
            result_cache_enabled=env_bool("PATTERN_RESULT_CACHE_ENABLED", defaults["result_cache_enabled"]),
        )


DEFAULT_MATCHER_CONFIG = MatcherConfig()
