from __future__ import annotations

import pytest

from pattern_advisor.patterns.catalog import (
    SAMPLE_CATALOG_CSV,
    load_catalog,
    load_examples_csv,
    load_patterns_csv,
)

_HEADER = "pattern_id,language,code,explanation\n"


def _write_examples(tmp_path, rows: str):
    path = tmp_path / "examples.csv"
    path.write_text(_HEADER + rows, encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_bundled_catalog_attaches_examples():
    catalog = load_catalog()

    singleton = await catalog.get("singleton")
    facade = await catalog.get("facade")

    assert len(catalog) == 12
    assert sorted(e.language for e in singleton.examples) == ["Java", "Python", "TypeScript"]
    assert all(e.code.strip() for e in singleton.examples)
    assert facade.examples == []


def test_patterns_load_without_examples_by_default():
    patterns = load_patterns_csv()
    assert all(p.examples == [] for p in patterns)


def test_multiline_code_survives_the_csv(tmp_path):
    path = _write_examples(tmp_path, 'builder,Python,"b = Builder()\nb.build()",Two lines\n')

    examples = load_examples_csv(path)

    assert examples["builder"][0].code == "b = Builder()\nb.build()"
    assert examples["builder"][0].explanation == "Two lines"


def test_examples_for_filters_case_insensitively(tmp_path):
    path = _write_examples(
        tmp_path,
        "observer,TypeScript,emit(),\nobserver,Python,notify(),\nobserver,Go,ch <- event,\n"
        "observer,Java,fire(),\n",
    )
    observer = next(p for p in load_patterns_csv(SAMPLE_CATALOG_CSV, path) if p.id == "observer")

    assert [e.code for e in observer.examples_for("PYTHON")] == ["notify()"]
    assert [e.language for e in observer.examples_for()] == ["Go", "Java", "Python"]
    assert observer.examples_for("Rust") == []


@pytest.mark.parametrize("second_language", ["Python", "python "])
def test_duplicate_language_for_a_pattern_is_rejected(tmp_path, second_language):
    path = _write_examples(tmp_path, f"singleton,Python,a(),\nsingleton,{second_language},b(),\n")

    with pytest.raises(ValueError, match="Duplicate code examples"):
        load_examples_csv(path)


def test_examples_for_unknown_patterns_are_rejected(tmp_path):
    path = _write_examples(tmp_path, "no-such-pattern,Python,x = 1,\n")

    with pytest.raises(ValueError, match="unknown patterns"):
        load_patterns_csv(SAMPLE_CATALOG_CSV, path)
