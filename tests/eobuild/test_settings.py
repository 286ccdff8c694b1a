"""Settings precedence and derived values."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from EOBuild.settings import BuildCfg, LogFormat


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    cfg = BuildCfg()

    assert cfg.target_dir == (tmp_path / "target").resolve()
    assert cfg.resolved_catalog_path == cfg.target_dir / "eo-foreign.jsonl"
    assert cfg.resolved_placed_path == cfg.target_dir / "eo-placed.jsonl"
    assert not cfg.is_released
    assert cfg.commit_hash is None and cfg.narrow_hash is None
    assert cfg.tag == "master"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("EOBUILD_TOOL_VERSION", "0.30.1")
    monkeypatch.setenv("EOBUILD_COMMIT_HASH", "1234567890abcdef")
    monkeypatch.setenv("EOBUILD_EXCLUDE_BINARIES", "META-INF/*, *.txt")
    monkeypatch.setenv("EOBUILD_LOG_FORMAT", "json")
    monkeypatch.setenv("EOBUILD_CATALOG_PATH", str(tmp_path / "cat.jsonl"))

    cfg = BuildCfg()

    assert cfg.is_released
    assert cfg.narrow_hash == "1234567"
    assert BuildCfg(commit_hash=" ABCDEF1234 ").commit_hash == "abcdef1234"
    assert cfg.exclude_binaries == ("META-INF/*", "*.txt")
    assert cfg.log_format is LogFormat.JSON
    assert cfg.resolved_catalog_path == (tmp_path / "cat.jsonl").resolve()


def test_explicit_values_beat_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EOBUILD_TOOL_VERSION", "0.30.1")
    assert BuildCfg(tool_version="1.0.0-SNAPSHOT").is_released is False


@pytest.mark.parametrize(
    "field,value",
    [
        ("workers", 0),
        ("release_pattern", "("),
        ("tool_version", "  "),
        ("commit_hash", "master"),
        ("commit_hash", "abc"),
        ("tag", " "),
    ],
)
def test_invalid_values(field: str, value: object) -> None:
    with pytest.raises(ValidationError):
        BuildCfg(**{field: value})
