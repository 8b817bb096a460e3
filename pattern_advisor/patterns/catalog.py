from __future__ import annotations

from pathlib import Path
from typing import Iterable, Protocol

import pandas as pd

from .models import CodeExample, Pattern

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
SAMPLE_CATALOG_CSV = _DATA_DIR / "patterns.csv"
SAMPLE_EXAMPLES_CSV = _DATA_DIR / "pattern_examples.csv"

_LIST_COLUMNS = ("benefits", "drawbacks", "use_cases", "tags")
_LIST_SEPARATOR = ";"


class PatternCatalog(Protocol):
    """Read-only access to pattern records."""

    async def get(self, pattern_id: str) -> Pattern | None: ...

    async def get_many(self, pattern_ids: Iterable[str]) -> list[Pattern]: ...

    async def by_categories(self, categories: Iterable[str]) -> list[Pattern]: ...

    async def all(self) -> list[Pattern]: ...


class InMemoryPatternCatalog:
    def __init__(self, patterns: Iterable[Pattern]) -> None:
        self._patterns: dict[str, Pattern] = {}
        for pattern in patterns:
            if pattern.id in self._patterns:
                raise ValueError(f"Duplicate pattern id: {pattern.id}")
            self._patterns[pattern.id] = pattern

    def __len__(self) -> int:
        return len(self._patterns)

    async def get(self, pattern_id: str) -> Pattern | None:
        return self._patterns.get(pattern_id)

    async def get_many(self, pattern_ids: Iterable[str]) -> list[Pattern]:
        return [self._patterns[pid] for pid in pattern_ids if pid in self._patterns]

    async def by_categories(self, categories: Iterable[str]) -> list[Pattern]:
        wanted = {c.strip().lower() for c in categories if c and c.strip()}
        return [p for p in self._patterns.values() if p.category.lower() in wanted]

    async def all(self) -> list[Pattern]:
        return list(self._patterns.values())


def _split_list(value: object) -> list[str]:
    if not isinstance(value, str):
        return []
    return [item.strip() for item in value.split(_LIST_SEPARATOR) if item.strip()]


def load_examples_csv(path: Path = SAMPLE_EXAMPLES_CSV) -> dict[str, list[CodeExample]]:
    """Read code examples keyed by pattern id; one row per (pattern, language)."""
    df = pd.read_csv(path, dtype=str).fillna("")
    keys = df[["pattern_id"]].assign(language=df["language"].str.strip().str.casefold())
    duplicated = df[keys.duplicated(keep=False)]
    if not duplicated.empty:
        pairs = sorted(set(zip(duplicated["pattern_id"], duplicated["language"])))
        raise ValueError(f"Duplicate code examples for (pattern, language): {pairs}")

    examples: dict[str, list[CodeExample]] = {}
    for pattern_id, group in df.groupby("pattern_id", sort=True):
        examples[pattern_id] = [
            CodeExample(language=row["language"], code=row["code"], explanation=row["explanation"])
            for row in group.to_dict(orient="records")
        ]
    return examples


def load_patterns_csv(
    path: Path = SAMPLE_CATALOG_CSV,
    examples_path: Path | None = None,
) -> list[Pattern]:
    """Read a pattern CSV; list columns hold ``;``-separated values.

    Code examples from ``examples_path`` are attached to their patterns; an
    example naming a pattern id missing from the catalog is an error.
    """
    df = pd.read_csv(path, dtype=str).fillna("")
    examples = load_examples_csv(examples_path) if examples_path is not None else {}

    patterns: list[Pattern] = []
    for row in df.to_dict(orient="records"):
        for column in _LIST_COLUMNS:
            row[column] = _split_list(row.get(column))
        row["complexity"] = row.get("complexity") or None
        row["examples"] = examples.get(row["id"], [])
        patterns.append(Pattern(**row))

    unknown = set(examples) - {p.id for p in patterns}
    if unknown:
        raise ValueError(f"Code examples reference unknown patterns: {sorted(unknown)}")
    return patterns


def load_catalog(
    path: Path = SAMPLE_CATALOG_CSV,
    examples_path: Path | None = SAMPLE_EXAMPLES_CSV,
) -> InMemoryPatternCatalog:
    return InMemoryPatternCatalog(load_patterns_csv(path, examples_path))
