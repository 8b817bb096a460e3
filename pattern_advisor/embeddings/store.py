from __future__ import annotations

import asyncio
import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import numpy as np

from ..errors import StorageError


@dataclass(frozen=True, eq=False)
class PatternEmbedding:
    pattern_id: str
    vector: np.ndarray
    dimension: int
    model: str
    strategy: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source_hash: str | None = None

    def __post_init__(self) -> None:
        vector = np.asarray(self.vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise ValueError(
                f"Embedding for {self.pattern_id!r} has shape {vector.shape}, declared dimension {self.dimension}"
            )
        vector = vector.copy()
        vector.setflags(write=False)
        object.__setattr__(self, "vector", vector)

    def metadata(self) -> dict:
        return {
            "pattern_id": self.pattern_id,
            "dimension": self.dimension,
            "model": self.model,
            "strategy": self.strategy,
            "created_at": self.created_at.isoformat(),
            "source_hash": self.source_hash,
        }


class EmbeddingStore(Protocol):
    """Persisted pattern embeddings keyed by pattern id."""

    async def get(self, pattern_id: str) -> PatternEmbedding | None: ...

    async def list_all(self) -> list[PatternEmbedding]: ...

    async def upsert(self, embedding: PatternEmbedding) -> None: ...

    async def upsert_many(self, embeddings: list[PatternEmbedding]) -> None: ...

    async def delete(self, pattern_id: str) -> bool: ...


class InMemoryEmbeddingStore:
    """Copy-on-write mapping: every write swaps in a new dict, so readers
    holding the previous snapshot never see a half-applied change."""

    def __init__(self, embeddings: list[PatternEmbedding] | None = None) -> None:
        self._records: dict[str, PatternEmbedding] = {e.pattern_id: e for e in embeddings or []}

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, pattern_id: str) -> PatternEmbedding | None:
        return self._records.get(pattern_id)

    async def list_all(self) -> list[PatternEmbedding]:
        snapshot = self._records
        return [snapshot[k] for k in sorted(snapshot)]

    async def upsert(self, embedding: PatternEmbedding) -> None:
        self._records = {**self._records, embedding.pattern_id: embedding}

    async def upsert_many(self, embeddings: list[PatternEmbedding]) -> None:
        self._records = {**self._records, **{e.pattern_id: e for e in embeddings}}

    async def delete(self, pattern_id: str) -> bool:
        if pattern_id not in self._records:
            return False
        self._records = {k: v for k, v in self._records.items() if k != pattern_id}
        return True


class NpzEmbeddingStore(InMemoryEmbeddingStore):
    """Embedding store persisted to a single ``.npz`` file.

    Each write replaces the file atomically (write to a temp file, then
    ``os.replace``), so a crash mid-write leaves the previous file intact.
    The file write and the in-memory swap run together in a worker thread
    under one lock: a write whose awaiting task is cancelled still finishes
    both, and writers never interleave their ``os.replace`` calls.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._loaded = False
        self._file_lock = threading.Lock()

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await asyncio.to_thread(self._load)

    async def reload(self) -> None:
        await asyncio.to_thread(self._load, True)

    async def get(self, pattern_id: str) -> PatternEmbedding | None:
        await self._ensure_loaded()
        return await super().get(pattern_id)

    async def list_all(self) -> list[PatternEmbedding]:
        await self._ensure_loaded()
        return await super().list_all()

    async def upsert(self, embedding: PatternEmbedding) -> None:
        await self.upsert_many([embedding])

    async def upsert_many(self, embeddings: list[PatternEmbedding]) -> None:
        changes = {e.pattern_id: e for e in embeddings}
        await asyncio.to_thread(self._commit, changes)

    async def delete(self, pattern_id: str) -> bool:
        return await asyncio.to_thread(self._commit, None, pattern_id)

    def _load(self, force: bool = False) -> None:
        with self._file_lock:
            self._load_locked(force)

    def _load_locked(self, force: bool = False) -> None:
        if force or not self._loaded:
            self._records = self._read()
            self._loaded = True

    def _commit(
        self,
        changes: dict[str, PatternEmbedding] | None = None,
        removed: str | None = None,
    ) -> bool:
        with self._file_lock:
            self._load_locked()
            if removed is not None and removed not in self._records:
                return False
            records = {k: v for k, v in self._records.items() if k != removed}
            records.update(changes or {})
            self._write(records)
            self._records = records
            return True

    def _read(self) -> dict[str, PatternEmbedding]:
        if not self.path.exists():
            return {}
        try:
            with np.load(self.path, allow_pickle=False) as archive:
                meta = json.loads(str(archive["meta"]))
                records: dict[str, PatternEmbedding] = {}
                for i, item in enumerate(meta):
                    records[item["pattern_id"]] = PatternEmbedding(
                        pattern_id=item["pattern_id"],
                        vector=archive[f"vec_{i}"],
                        dimension=int(item["dimension"]),
                        model=item["model"],
                        strategy=item["strategy"],
                        created_at=datetime.fromisoformat(item["created_at"]),
                        source_hash=item.get("source_hash"),
                    )
        except (OSError, KeyError, ValueError) as exc:
            raise StorageError(f"Could not read embeddings from {self.path}: {exc}") from exc
        return records

    def _write(self, records: dict[str, PatternEmbedding]) -> None:
        ordered = [records[k] for k in sorted(records)]
        arrays = {f"vec_{i}": e.vector for i, e in enumerate(ordered)}
        meta = json.dumps([e.metadata() for e in ordered])
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".npz.tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    np.savez(fh, meta=np.array(meta), **arrays)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StorageError(f"Could not write embeddings to {self.path}: {exc}") from exc
