"""Footprint strategies and the composed generate / reuse / skip policy."""

from __future__ import annotations

from pathlib import Path

import pytest

from EOBuild.cache import CacheKey, ContentCache
from EOBuild.errors import CacheMiss, GenerationFailed
from EOBuild.footprint import (
    REGENERATED,
    REUSED,
    SKIPPED,
    FootprintTally,
    Fork,
    Generated,
    IfReleased,
    IfTargetExists,
    Ignore,
    UpdateBoth,
    UpdateFromCache,
    cached_footprint,
)

RELATIVE = "foo/x/main.xmir"


class CountingGenerator:
    def __init__(self, payload: str = "<program/>") -> None:
        self.payload = payload
        self.calls = 0

    def __call__(self, source: Path) -> str:
        self.calls += 1
        return self.payload


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "src" / "main.eo"
    path.parent.mkdir(parents=True)
    path.write_text("[] > main\n", encoding="utf-8")
    return path


@pytest.fixture
def cache(tmp_path: Path) -> ContentCache:
    return ContentCache(tmp_path / "cache", "verify")


@pytest.fixture
def target(tmp_path: Path) -> Path:
    return tmp_path / "target" / "5-verify" / RELATIVE


def _policy(generate, cache, *, released=True, force=False, content_hash="abcdef1", tally=None):
    return cached_footprint(
        generate,
        cache,
        tool_version="1.2.3",
        content_hash=content_hash,
        relative_path=RELATIVE,
        released=released,
        force=force,
        tally=tally,
    )


def _key() -> CacheKey:
    return CacheKey("1.2.3", "abcdef1", RELATIVE)


# ============================================================================
# Primitives
# ============================================================================


def test_generated_writes_payload_and_records(tmp_path: Path, source: Path) -> None:
    tally = FootprintTally()
    target = tmp_path / "out" / "a.txt"

    assert Generated(lambda _: b"bytes", tally=tally).apply(source, target) == target
    assert target.read_bytes() == b"bytes"
    assert tally.last == REGENERATED


def test_generated_wraps_callback_errors(tmp_path: Path, source: Path) -> None:
    def broken(_: Path) -> str:
        raise ValueError("parser exploded")

    target = tmp_path / "out" / "a.txt"
    with pytest.raises(GenerationFailed) as excinfo:
        Generated(broken).apply(source, target)
    assert isinstance(excinfo.value.__cause__, ValueError)
    assert not target.exists()


def test_ignore_keeps_target_untouched(tmp_path: Path, source: Path, shift_mtime) -> None:
    target = tmp_path / "kept.txt"
    target.write_text("old", encoding="utf-8")
    before = shift_mtime(target, -60)
    tally = FootprintTally()

    Ignore(tally=tally).apply(source, target)

    assert target.stat().st_mtime == before
    assert target.read_text(encoding="utf-8") == "old"
    assert tally[SKIPPED] == 1


def test_update_from_cache_missing_entry(cache: ContentCache, source: Path, target: Path) -> None:
    with pytest.raises(CacheMiss):
        UpdateFromCache(cache, _key()).apply(source, target)


def test_update_both_mirrors_target(cache: ContentCache, source: Path, target: Path) -> None:
    UpdateBoth(Generated(lambda _: "<a/>"), cache, _key()).apply(source, target)
    assert cache.read(_key()) == b"<a/>"


def test_branches_choose_by_condition(tmp_path: Path, source: Path) -> None:
    target = tmp_path / "t.txt"
    first = Generated(lambda _: "first")
    second = Generated(lambda _: "second")

    Fork(lambda src, tgt: src.suffix == ".eo", first, second).apply(source, target)
    assert target.read_text(encoding="utf-8") == "first"
    Fork(False, first, second).apply(source, target)
    assert target.read_text(encoding="utf-8") == "second"
    IfReleased(True, first, second).apply(source, target)
    assert target.read_text(encoding="utf-8") == "first"
    IfTargetExists(Ignore(), second).apply(source, target)
    assert target.read_text(encoding="utf-8") == "first"


# ============================================================================
# Composed policy
# ============================================================================


def test_generates_and_writes_through_when_nothing_exists(
    cache: ContentCache, source: Path, target: Path
) -> None:
    generate = CountingGenerator()
    tally = FootprintTally()

    _policy(generate, cache, tally=tally).apply(source, target)

    assert generate.calls == 1
    assert target.read_text(encoding="utf-8") == "<program/>"
    assert cache.read(_key()) == b"<program/>"
    assert tally.last == REGENERATED


def test_existing_target_is_ignored(
    cache: ContentCache, source: Path, target: Path, shift_mtime
) -> None:
    target.parent.mkdir(parents=True)
    target.write_text("<old/>", encoding="utf-8")
    before = shift_mtime(target, -60)
    generate = CountingGenerator()

    _policy(generate, cache).apply(source, target)

    assert generate.calls == 0
    assert target.stat().st_mtime == before
    assert not cache.exists(_key())


def test_applying_twice_is_idempotent(cache: ContentCache, source: Path, target: Path) -> None:
    generate = CountingGenerator()
    footprint = _policy(generate, cache)

    footprint.apply(source, target)
    first = target.stat().st_mtime
    footprint.apply(source, target)

    assert generate.calls == 1
    assert target.stat().st_mtime == first


def test_fresh_cache_entry_is_restored(
    cache: ContentCache, source: Path, target: Path, shift_mtime
) -> None:
    entry = cache.write(_key(), "<cached/>")
    shift_mtime(entry, 3600)
    generate = CountingGenerator()
    tally = FootprintTally()

    _policy(generate, cache, tally=tally).apply(source, target)

    assert generate.calls == 0
    assert target.read_text(encoding="utf-8") == "<cached/>"
    assert tally.last == REUSED


def test_stale_cache_entry_is_regenerated(
    cache: ContentCache, source: Path, target: Path, shift_mtime
) -> None:
    entry = cache.write(_key(), "<stale/>")
    shift_mtime(entry, -3600)
    generate = CountingGenerator("<fresh/>")

    _policy(generate, cache).apply(source, target)

    assert generate.calls == 1
    assert cache.read(_key()) == b"<fresh/>"


def test_force_regenerates_over_target_and_cache(
    cache: ContentCache, source: Path, target: Path, shift_mtime
) -> None:
    target.parent.mkdir(parents=True)
    target.write_text("<old/>", encoding="utf-8")
    shift_mtime(cache.write(_key(), "<cached/>"), 3600)
    generate = CountingGenerator("<forced/>")

    _policy(generate, cache, force=True).apply(source, target)

    assert generate.calls == 1
    assert target.read_text(encoding="utf-8") == "<forced/>"
    assert cache.read(_key()) == b"<forced/>"


def test_unreleased_version_never_reads_cache_but_writes_through(
    cache: ContentCache, source: Path, target: Path, shift_mtime
) -> None:
    shift_mtime(cache.write(_key(), "<cached/>"), 3600)
    generate = CountingGenerator("<dev/>")

    _policy(generate, cache, released=False).apply(source, target)

    assert generate.calls == 1
    assert target.read_text(encoding="utf-8") == "<dev/>"
    assert cache.read(_key()) == b"<dev/>"


def test_missing_hash_bypasses_cache(cache: ContentCache, source: Path, target: Path) -> None:
    generate = CountingGenerator()

    _policy(generate, cache, content_hash=None).apply(source, target)

    assert generate.calls == 1
    assert not cache.root.exists()


def test_generation_failure_leaves_cache_empty(
    cache: ContentCache, source: Path, target: Path
) -> None:
    def broken(_: Path) -> str:
        raise RuntimeError("boom")

    with pytest.raises(GenerationFailed):
        _policy(broken, cache).apply(source, target)
    assert not cache.exists(_key())
    assert not target.exists()
