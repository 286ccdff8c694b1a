"""Pull and verify stages end to end over a local objectionary."""

from __future__ import annotations

from pathlib import Path

import pytest

from EOBuild.catalog import CatalogEntry, ObjectCatalog
from EOBuild.errors import CatalogError, ConfigError, RunFailed
from EOBuild.pipeline import (
    DiagnosticCounts,
    DirectoryObjectionary,
    PullStage,
    TransformResult,
    VerifyStage,
    narrow_hash,
    object_path,
)

HASH = "abcdef1234567890"
VERSION = "1.2.3"


def to_xmir(source: Path) -> str:
    return f"<program name='{source.stem}'><errors/></program>"


def with_warning(source: Path) -> str:
    return "<program><errors><error severity='warning'>unused</error></errors></program>"


def with_error(source: Path) -> str:
    return "<program><errors><error severity='error'>broken</error></errors></program>"


@pytest.fixture
def dirs(tmp_path: Path) -> dict[str, Path]:
    return {"target": tmp_path / "target", "cache": tmp_path / "cache"}


def _pull(catalog, objectionary, dirs, **kwargs) -> PullStage:
    options = {
        "cache_root": dirs["cache"],
        "target_dir": dirs["target"],
        "tool_version": VERSION,
        "commit_hash": HASH,
        "released": True,
    }
    options.update(kwargs)
    return PullStage(catalog, objectionary, **options)


def _verify(catalog, transform, dirs, **kwargs) -> VerifyStage:
    options = {
        "cache_root": dirs["cache"],
        "target_dir": dirs["target"],
        "tool_version": VERSION,
        "released": True,
    }
    options.update(kwargs)
    return VerifyStage(catalog, transform, **options)


def test_object_path_and_narrow_hash() -> None:
    assert object_path("foo.x.main", "eo") == Path("foo/x/main.eo")
    assert object_path("foo.x.main") == Path("foo/x/main")
    assert narrow_hash(HASH) == "abcdef1"
    with pytest.raises(ConfigError):
        narrow_hash("  ")
    with pytest.raises(ConfigError, match="master"):
        narrow_hash("master")
    with pytest.raises(ValueError):
        object_path("..")


def test_pull_materialises_sources_and_cache(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "main.eo:1")

    outcome = _pull(catalog, objectionary, dirs).run()

    target = dirs["target"] / "4-pull" / "foo" / "x" / "main.eo"
    assert target.read_text(encoding="utf-8") == "[] > main\n"
    assert (dirs["cache"] / "pulled" / VERSION / "abcdef1" / "foo" / "x" / "main.eo").is_file()
    entry = catalog.find("foo.x.main")
    assert entry.source_path == target
    assert entry.content_hash == "abcdef1"
    assert entry.has_stage("pull")
    assert outcome.regenerated == 1


def test_pull_failure_names_unit_and_provenance(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("org.eolang.io.stdout", "app.eo:2")
    catalog.register("org.missing", "app.eo:7")

    with pytest.raises(RunFailed) as excinfo:
        _pull(catalog, objectionary, dirs).run()

    assert excinfo.value.identifiers == ("org.missing",)
    assert "app.eo:7" in str(excinfo.value)
    assert catalog.find("org.eolang.io.stdout").has_stage("pull")
    assert not catalog.find("org.missing").pulled


def test_offline_pull_does_nothing(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")

    outcome = _pull(catalog, objectionary, dirs, commit_hash="", offline=True).run()

    assert outcome.scheduled == 0
    assert not catalog.find("foo.x.main").pulled
    assert not dirs["target"].exists()


def test_pull_reuses_cache_across_builds(
    catalog: ObjectCatalog, objects: Path, dirs: dict[str, Path], tmp_path: Path
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, DirectoryObjectionary(objects), dirs).run()

    other = ObjectCatalog()
    other.register("foo.x.main", "x")
    # The remote is gone; only the cache can satisfy the second build.
    outcome = _pull(
        other,
        DirectoryObjectionary(tmp_path / "empty"),
        {"target": tmp_path / "second", "cache": dirs["cache"]},
    ).run()

    assert outcome.reused == 1
    assert (tmp_path / "second" / "4-pull" / "foo" / "x" / "main.eo").read_text(
        encoding="utf-8"
    ) == "[] > main\n"


def test_verify_scenario_generate_skip_restore(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "main.eo:1")
    _pull(catalog, objectionary, dirs).run()

    first = _verify(catalog, to_xmir, dirs).run()
    target = dirs["target"] / "5-verify" / "foo" / "x" / "main.xmir"
    cached = dirs["cache"] / "verify" / VERSION / "abcdef1" / "foo" / "x" / "main.xmir"
    assert first.regenerated == 1
    assert cached.read_bytes() == target.read_bytes()
    assert catalog.find("foo.x.main").has_stage("verify")

    catalog.clear_stages()
    before = target.stat().st_mtime
    second = _verify(catalog, to_xmir, dirs).run()
    assert second.skipped == 1
    assert target.stat().st_mtime == before

    catalog.clear_stages()
    content = target.read_bytes()
    target.unlink()
    third = _verify(catalog, with_error, dirs).run()
    assert third.reused == 1
    assert target.read_bytes() == content


def test_verify_hash_gates_cache_lookup(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, objectionary, dirs).run()
    _verify(catalog, to_xmir, dirs).run()
    target = dirs["target"] / "5-verify" / "foo" / "x" / "main.xmir"

    entry = catalog.find("foo.x.main")
    catalog.pulled("foo.x.main", entry.source_path, "1234567")
    catalog.clear_stages()
    assert _verify(catalog, with_warning, dirs).run().skipped == 1

    target.unlink()
    catalog.clear_stages()
    outcome = _verify(catalog, with_warning, dirs).run()
    assert outcome.regenerated == 1
    assert "warning" in target.read_text(encoding="utf-8")
    assert (dirs["cache"] / "verify" / VERSION / "1234567" / "foo" / "x" / "main.xmir").is_file()


def test_verify_gate_failure_leaves_stage_unmarked(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    catalog.register("org.eolang.io.stdout", "y")
    _pull(catalog, objectionary, dirs).run()

    def mixed(source: Path) -> str:
        return with_error(source) if source.stem == "main" else to_xmir(source)

    with pytest.raises(RunFailed) as excinfo:
        _verify(catalog, mixed, dirs).run()

    assert excinfo.value.identifiers == ("foo.x.main",)
    assert not catalog.find("foo.x.main").has_stage("verify")
    assert catalog.find("org.eolang.io.stdout").has_stage("verify")


def test_verify_warnings_respect_fail_on_warning(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, objectionary, dirs).run()

    with pytest.raises(RunFailed):
        _verify(catalog, with_warning, dirs, fail_on_warning=True).run()
    outcome = _verify(catalog, with_warning, dirs).run()
    assert outcome.skipped == 1
    assert catalog.find("foo.x.main").has_stage("verify")


def test_verify_uses_reported_diagnostics(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, objectionary, dirs).run()

    def reported(source: Path) -> TransformResult:
        return TransformResult(payload="compiled bytecode", diagnostics=DiagnosticCounts())

    outcome = _verify(catalog, reported, dirs).run()
    assert outcome.regenerated == 1
    target = dirs["target"] / "5-verify" / "foo" / "x" / "main.xmir"
    assert target.read_text(encoding="utf-8") == "compiled bytecode"

    catalog.clear_stages()
    assert _verify(catalog, reported, dirs).run().skipped == 1

    target.unlink()
    (dirs["target"] / "5-verify" / "foo" / "x" / "main.xmir.diagnostics.json").unlink()
    catalog.clear_stages()
    restored = _verify(catalog, reported, dirs).run()
    assert restored.reused == 1
    assert target.read_text(encoding="utf-8") == "compiled bytecode"
    assert catalog.find("foo.x.main").has_stage("verify")


def test_reported_warnings_are_gated_again_on_rebuild(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, objectionary, dirs).run()

    def warned(source: Path) -> TransformResult:
        return TransformResult(payload="compiled bytecode", diagnostics=DiagnosticCounts(warning=1))

    assert _verify(catalog, warned, dirs).run().regenerated == 1

    catalog.clear_stages()
    outcome = _verify(catalog, warned, dirs, fail_on_warning=True).run(strict=False)
    assert outcome.failed_identifiers == ("foo.x.main",)
    assert "1 warning(s)" in outcome.errors[0].message


def test_verify_source_requires_a_pulled_path(
    catalog: ObjectCatalog, dirs: dict[str, Path]
) -> None:
    stage = _verify(catalog, to_xmir, dirs)

    with pytest.raises(CatalogError) as excinfo:
        stage._source(CatalogEntry("foo.x.main", "main.eo:3"))
    assert "main.eo:3" in str(excinfo.value)

    located = _verify(catalog, to_xmir, dirs, locate=lambda entry: "elsewhere/main.eo")
    assert located._source(CatalogEntry("foo.x.main", "main.eo:3")) == Path("elsewhere/main.eo")


def test_verify_rejects_units_not_pulled(catalog: ObjectCatalog, dirs: dict[str, Path]) -> None:
    catalog.register("foo.x.main", "main.eo:9")

    outcome = _verify(catalog, to_xmir, dirs).run(strict=False)

    assert outcome.failed_identifiers == ("foo.x.main",)
    assert "main.eo:9" in outcome.errors[0].message


def test_unreleased_build_writes_through_without_reading(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")
    _pull(catalog, objectionary, dirs, tool_version="0.0.0", released=False).run()
    _verify(catalog, to_xmir, dirs, tool_version="0.0.0", released=False).run()

    target = dirs["target"] / "5-verify" / "foo" / "x" / "main.xmir"
    target.unlink()
    catalog.clear_stages()
    outcome = _verify(catalog, with_warning, dirs, tool_version="0.0.0", released=False).run()

    assert outcome.regenerated == 1
    assert (dirs["cache"] / "verify" / "0.0.0" / "abcdef1" / "foo" / "x" / "main.xmir").read_text(
        encoding="utf-8"
    ) == with_warning(target)


def test_pull_refuses_moving_refs(
    catalog: ObjectCatalog, objectionary: DirectoryObjectionary, dirs: dict[str, Path]
) -> None:
    catalog.register("foo.x.main", "x")

    with pytest.raises(ConfigError):
        _pull(catalog, objectionary, dirs, commit_hash="master")
    assert not (dirs["cache"] / "pulled").exists()
