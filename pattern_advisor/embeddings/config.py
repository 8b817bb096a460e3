from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path

from ..errors import ConfigurationError
from ..settings import env_bool, env_float, env_int, env_list, env_str

DEFAULT_PRIORITY: tuple[str, ...] = ("sentence-transformers", "openai", "hashing")


@dataclass(frozen=True)
class EmbeddingConfig:
    model_name: str = "all-MiniLM-L6-v2"
    dimension: int = 384
    priority: tuple[str, ...] = DEFAULT_PRIORITY
    openai_api_key: str = ""
    openai_model: str = "text-embedding-3-small"
    batch_size: int = 10
    bulk_batch_size: int = 32
    max_in_flight: int = 4
    retry_attempts: int = 3
    retry_delay: float = 1.0  # seconds between attempts
    call_timeout: float = 30.0
    batch_timeout: float = 120.0
    cache_enabled: bool = True
    cache_size: int = 1000
    cache_ttl: float = 3600.0
    embeddings_path: Path = Path(__file__).resolve().parent.parent / "data" / "embeddings.npz"

    def __post_init__(self) -> None:
        positive_ints = ("dimension", "batch_size", "bulk_batch_size", "max_in_flight", "retry_attempts", "cache_size")
        for name in positive_ints:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.retry_delay < 0:
            raise ConfigurationError(f"retry_delay must not be negative, got {self.retry_delay}")
        for name in ("call_timeout", "batch_timeout", "cache_ttl"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if not self.priority:
            raise ConfigurationError("priority must name at least one embedding strategy")

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        defaults = {f.name: f.default for f in fields(cls)}
        return cls(
            model_name=env_str("PATTERN_EMBED_MODEL", defaults["model_name"]),
            dimension=env_int("PATTERN_EMBED_DIMENSION", defaults["dimension"]),
            priority=env_list("PATTERN_EMBED_PRIORITY", defaults["priority"]),
            openai_api_key=env_str("OPENAI_API_KEY", ""),
            openai_model=env_str("PATTERN_EMBED_OPENAI_MODEL", defaults["openai_model"]),
            batch_size=env_int("PATTERN_EMBED_BATCH_SIZE", defaults["batch_size"]),
            bulk_batch_size=env_int("PATTERN_EMBED_BULK_BATCH_SIZE", defaults["bulk_batch_size"]),
            max_in_flight=env_int("PATTERN_EMBED_MAX_IN_FLIGHT", defaults["max_in_flight"]),
            retry_attempts=env_int("PATTERN_EMBED_RETRY_ATTEMPTS", defaults["retry_attempts"]),
            retry_delay=env_float("PATTERN_EMBED_RETRY_DELAY", defaults["retry_delay"]),
            call_timeout=env_float("PATTERN_EMBED_CALL_TIMEOUT", defaults["call_timeout"]),
            batch_timeout=env_float("PATTERN_EMBED_BATCH_TIMEOUT", defaults["batch_timeout"]),
            cache_enabled=env_bool("PATTERN_EMBED_CACHE_ENABLED", defaults["cache_enabled"]),
            cache_size=env_int("PATTERN_EMBED_CACHE_SIZE", defaults["cache_size"]),
            cache_ttl=env_float("PATTERN_EMBED_CACHE_TTL", defaults["cache_ttl"]),
            embeddings_path=Path(env_str("PATTERN_EMBEDDINGS_PATH", str(defaults["embeddings_path"]))),
        )


DEFAULT_EMBEDDING_CONFIG = EmbeddingConfig()
