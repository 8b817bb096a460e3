"""
Offline bulk generation of pattern embeddings.

Usage:
    python -m pattern_advisor.embeddings.precompute [--catalog PATH] [--force]
"""
from __future__ import annotations

import argparse
import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..patterns.catalog import SAMPLE_CATALOG_CSV, load_patterns_csv
from ..patterns.models import Pattern
from .config import DEFAULT_EMBEDDING_CONFIG, EmbeddingConfig
from .selector import EmbeddingStrategySelector
from .store import EmbeddingStore, NpzEmbeddingStore, PatternEmbedding

_module_logger = logging.getLogger(__name__)


def source_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class BulkEmbeddingReport:
    total: int = 0
    generated: int = 0
    skipped: int = 0
    batches: int = 0
    strategy: str | None = None
    model: str | None = None
    dimension: int | None = None
    elapsed_seconds: float = 0.0


class BulkEmbeddingJob:
    """Embed a whole catalog and persist the vectors.

    The embedding cache is bypassed and batches are larger than at request
    time. At most ``max_in_flight`` batches run at once; each batch is stored
    in one write once all of its vectors exist. The first failing batch
    cancels every batch that has not started writing; a batch already
    writing finishes, and batches stored before the failure stay stored.
    """

    def __init__(
        self,
        selector: EmbeddingStrategySelector,
        store: EmbeddingStore,
        config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
        logger: logging.Logger | None = None,
    ) -> None:
        self.selector = selector
        self.store = store
        self.config = config
        self.logger = logger or _module_logger

    async def run(self, patterns: Sequence[Pattern], force: bool = False) -> BulkEmbeddingReport:
        start_time = time.perf_counter()
        strategy = await self.selector.resolve()
        report = BulkEmbeddingReport(
            total=len(patterns),
            strategy=strategy.name,
            model=strategy.model,
            dimension=strategy.dimension,
        )

        todo: list[tuple[Pattern, str, str]] = []
        for pattern in patterns:
            text = pattern.embedding_text()
            digest = source_hash(text)
            if not force:
                existing = await self.store.get(pattern.id)
                if (
                    existing is not None
                    and existing.source_hash == digest
                    and existing.model == strategy.model
                    and existing.dimension == strategy.dimension
                ):
                    report.skipped += 1
                    continue
            todo.append((pattern, text, digest))

        size = self.config.bulk_batch_size
        batches = [todo[i:i + size] for i in range(0, len(todo), size)]
        self.logger.info(
            "Bulk embedding | patterns=%d to_generate=%d skipped=%d batches=%d strategy=%s",
            report.total,
            len(todo),
            report.skipped,
            len(batches),
            strategy.name,
        )

        semaphore = asyncio.Semaphore(self.config.max_in_flight)
        abort = asyncio.Event()
        writing: set[asyncio.Task] = set()
        tasks = [
            asyncio.create_task(self._process(batch, semaphore, abort, writing)) for batch in batches
        ]
        try:
            for finished in asyncio.as_completed(tasks):
                report.generated += await finished
                report.batches += 1
                self.logger.info("Bulk embedding progress | batches=%d/%d", report.batches, len(batches))
        except BaseException:
            abort.set()
            # batches already writing are left to finish
            for task in tasks:
                if task not in writing:
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.error(
                "Bulk embedding aborted | stored_batches=%d/%d generated=%d",
                report.batches,
                len(batches),
                report.generated,
                exc_info=True,
            )
            raise

        report.elapsed_seconds = round(time.perf_counter() - start_time, 3)
        return report

    async def _process(
        self,
        batch: list[tuple[Pattern, str, str]],
        semaphore: asyncio.Semaphore,
        abort: asyncio.Event,
        writing: set[asyncio.Task],
    ) -> int:
        async with semaphore:
            # a failing batch sets abort before it releases the semaphore
            if abort.is_set():
                return 0
            try:
                result = await self.selector.generate_embeddings(
                    [text for _, text, _ in batch],
                    use_cache=False,
                    batch_size=self.config.bulk_batch_size,
                )
            except BaseException:
                abort.set()
                raise
            if abort.is_set():
                return 0
            records = [
                PatternEmbedding(
                    pattern_id=pattern.id,
                    vector=vector,
                    dimension=result.dimension,
                    model=result.model,
                    strategy=result.strategy,
                    source_hash=digest,
                )
                for (pattern, _, digest), vector in zip(batch, result.vectors)
            ]
            writing.add(asyncio.current_task())
            await self.store.upsert_many(records)
        return len(records)


def run_precompute(
    catalog_path: Path = SAMPLE_CATALOG_CSV,
    force: bool = False,
    config: EmbeddingConfig | None = None,
) -> BulkEmbeddingReport:
    config = config or EmbeddingConfig.from_env()
    patterns = load_patterns_csv(catalog_path)
    selector = EmbeddingStrategySelector.from_config(config)
    store = NpzEmbeddingStore(config.embeddings_path)

    print(f"Embedding {len(patterns)} patterns from {catalog_path} ...")
    report = asyncio.run(BulkEmbeddingJob(selector, store, config).run(patterns, force=force))
    print(
        f"Generated {report.generated}, skipped {report.skipped} "
        f"({report.strategy}/{report.model}, dim={report.dimension}) -> {config.embeddings_path}"
    )
    return report


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Precompute pattern embeddings")
    parser.add_argument("--catalog", type=Path, default=SAMPLE_CATALOG_CSV)
    parser.add_argument("--force", action="store_true", help="Re-embed patterns whose text is unchanged")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_precompute(args.catalog, force=args.force)
