"""
Typer CLI driving the incremental build engine.

Every command reads the catalog and the placement ledger at start and writes
them back at the end, so each invocation is one run boundary.  Per-unit
failures are collected by the stages and reported together before the command
exits with status 1.

NAVMAP:
- CLI_ROOT: Root Typer app with the settings callback
- CATALOG_COMMANDS: register, catalog
- STAGE_COMMANDS: pull, verify
- PLACEMENT_COMMANDS: place, unplace
- CONFIG_COMMANDS: config show
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Annotated, Any, Callable, NoReturn, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from EOBuild.catalog import ObjectCatalog
from EOBuild.errors import ConfigError, EOBuildError, RunFailed
from EOBuild.logging import setup_logging
from EOBuild.pipeline import (
    DirectoryObjectionary,
    PullStage,
    RemoteObjectionary,
    StageOutcome,
    VerifyStage,
    raise_for_failures,
    resolve_commit,
)
from EOBuild.placement import (
    DependencyDescriptor,
    PlacementLedger,
    PlacementResolver,
    dependency_dirs,
    transitive_dependencies,
)
from EOBuild.settings import BuildCfg

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
    help="[bold]eobuild[/bold]: incremental, cache-aware compiler pipeline driver.",
)

config_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
app.add_typer(config_app, name="config", help="Introspect the effective configuration")


# ============================================================================
# Root callback
# ============================================================================


@app.callback()
def root_callback(
    ctx: typer.Context,
    target_dir: Annotated[
        Optional[Path], typer.Option("--target-dir", help="Directory receiving stage outputs")
    ] = None,
    cache_root: Annotated[
        Optional[Path], typer.Option("--cache-root", help="Root of the shared content cache")
    ] = None,
    tool_version: Annotated[
        Optional[str], typer.Option("--tool-version", help="Compiler toolchain version")
    ] = None,
    commit_hash: Annotated[
        Optional[str], typer.Option("--hash", help="Objectionary commit hash")
    ] = None,
    tag: Annotated[
        Optional[str], typer.Option("--tag", help="Objectionary tag resolved when no hash is pinned")
    ] = None,
    force: Annotated[
        Optional[bool], typer.Option("--force/--no-force", help="Regenerate unconditionally")
    ] = None,
    fail_on_warning: Annotated[
        Optional[bool],
        typer.Option("--fail-on-warning/--no-fail-on-warning", help="Fail on warnings"),
    ] = None,
    offline: Annotated[
        Optional[bool], typer.Option("--offline/--online", help="Do not pull sources")
    ] = None,
    workers: Annotated[
        Optional[int], typer.Option("--workers", help="Units processed concurrently")
    ] = None,
    log_level: Annotated[
        Optional[str], typer.Option("--log-level", help="Logging level (DEBUG|INFO|WARNING|ERROR)")
    ] = None,
    log_format: Annotated[
        Optional[str], typer.Option("--log-format", help="Logging format (console|json)")
    ] = None,
) -> None:
    """Load settings (CLI > ENV > defaults) and configure logging."""

    overrides: dict[str, Any] = {
        "target_dir": target_dir,
        "cache_root": cache_root,
        "tool_version": tool_version,
        "commit_hash": commit_hash,
        "tag": tag,
        "force_overwrite": force,
        "fail_on_warning": fail_on_warning,
        "offline": offline,
        "workers": workers,
        "log_level": log_level.upper() if log_level else None,
        "log_format": log_format.lower() if log_format else None,
    }
    try:
        cfg = BuildCfg(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as exc:
        err_console.print(f"[red]✗ Configuration Error:[/red] {exc}")
        raise typer.Exit(code=1)
    setup_logging(cfg.log_level.value, cfg.log_format.value)
    ctx.obj = cfg


def _settings(ctx: typer.Context) -> BuildCfg:
    cfg = ctx.obj
    if not isinstance(cfg, BuildCfg):
        err_console.print("[red]✗ Configuration not initialized[/red]")
        raise typer.Exit(code=1)
    return cfg


def _report(outcome: StageOutcome) -> None:
    table = Table(title=f"Stage '{outcome.stage}'")
    for column in ("scheduled", "regenerated", "reused", "skipped", "failed"):
        table.add_column(column, justify="right")
    table.add_row(
        str(outcome.scheduled),
        str(outcome.regenerated),
        str(outcome.reused),
        str(outcome.skipped),
        str(outcome.failed),
    )
    console.print(table)


def _fail(exc: Exception) -> NoReturn:
    if isinstance(exc, RunFailed):
        err_console.print(
            f"[red]✗ Stage '{exc.stage}' failed for {len(exc.failures)} unit(s)[/red]"
        )
        for identifier, cause in exc.failures:
            err_console.print(f"  [bold]{identifier}[/bold]: {cause}")
    else:
        err_console.print(f"[red]✗ {type(exc).__name__}:[/red] {exc}")
    raise typer.Exit(code=1)


def _load_catalog(cfg: BuildCfg) -> ObjectCatalog:
    try:
        return ObjectCatalog.load(cfg.resolved_catalog_path)
    except EOBuildError as exc:
        _fail(exc)


def _check(outcome: StageOutcome) -> None:
    try:
        raise_for_failures(outcome)
    except RunFailed as exc:
        _fail(exc)


def load_transform(spec: str) -> Callable[[Path], Any]:
    """Resolve ``package.module:callable`` into the callable it names."""

    module_name, sep, attribute = spec.partition(":")
    if not sep or not module_name or not attribute:
        raise typer.BadParameter(f"Expected 'module:callable', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"Cannot import {module_name}: {exc}") from exc
    target: Any = module
    for part in attribute.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise typer.BadParameter(f"{module_name} has no attribute {attribute!r}")
    if not callable(target):
        raise typer.BadParameter(f"{spec} is not callable")
    return target


# ============================================================================
# Catalog commands
# ============================================================================


@app.command()
def register(
    ctx: typer.Context,
    identifiers: Annotated[list[str], typer.Argument(help="Dotted unit names (foo.x.main)")],
    discovered_at: Annotated[
        str, typer.Option("--discovered-at", help="Where the units were discovered")
    ] = "command line",
) -> None:
    """Register units in the catalog."""

    cfg = _settings(ctx)
    try:
        catalog = ObjectCatalog.load(cfg.resolved_catalog_path)
        for identifier in identifiers:
            catalog.register(identifier, discovered_at)
        catalog.save(cfg.resolved_catalog_path)
    except EOBuildError as exc:
        _fail(exc)
    console.print(f"[green]✓ {len(identifiers)} unit(s) registered[/green] ({len(catalog)} total)")


@app.command("catalog")
def show_catalog(ctx: typer.Context) -> None:
    """List catalog entries in registration order."""

    cfg = _settings(ctx)
    catalog = _load_catalog(cfg)
    table = Table(title=str(cfg.resolved_catalog_path))
    for column in ("identifier", "discovered at", "hash", "stages", "source"):
        table.add_column(column)
    for entry in catalog:
        table.add_row(
            entry.identifier,
            entry.discovered_at,
            entry.content_hash or "-",
            ",".join(sorted(entry.stages)) or "-",
            str(entry.source_path or "-"),
        )
    console.print(table)


# ============================================================================
# Stage commands
# ============================================================================


def _pinned_commit(cfg: BuildCfg, from_dir: Optional[Path]) -> str:
    if cfg.offline:
        return ""
    if cfg.commit_hash is not None:
        return cfg.commit_hash
    if from_dir is not None:
        raise ConfigError(f"Objects in {from_dir} carry no revision, pin them with --hash")
    return resolve_commit(cfg.tag, url_template=cfg.commit_url)


@app.command()
def pull(
    ctx: typer.Context,
    from_dir: Annotated[
        Optional[Path],
        typer.Option("--from-dir", help="Read objects from a local tree instead of the network"),
    ] = None,
) -> None:
    """Pull sources of every unit not pulled yet."""

    cfg = _settings(ctx)
    catalog = _load_catalog(cfg)
    objectionary: Any = None
    try:
        commit = _pinned_commit(cfg, from_dir)
        if from_dir is not None:
            objectionary = DirectoryObjectionary(from_dir)
        else:
            objectionary = RemoteObjectionary(commit, url_template=cfg.objectionary_url)
        stage = PullStage(
            catalog,
            objectionary,
            cache_root=cfg.cache_root,
            target_dir=cfg.target_dir,
            tool_version=cfg.tool_version,
            commit_hash=commit,
            released=cfg.is_released,
            force=cfg.force_overwrite,
            offline=cfg.offline,
            workers=cfg.workers,
        )
        outcome = stage.run(strict=False)
    except EOBuildError as exc:
        _fail(exc)
    finally:
        catalog.save(cfg.resolved_catalog_path)
        if isinstance(objectionary, RemoteObjectionary):
            objectionary.close()
    _report(outcome)
    _check(outcome)


@app.command()
def verify(
    ctx: typer.Context,
    transform: Annotated[
        str,
        typer.Option("--transform", help="Transform callable as 'package.module:function'"),
    ],
) -> None:
    """Transform pulled units and gate them on their diagnostics."""

    cfg = _settings(ctx)
    func = load_transform(transform)
    catalog = _load_catalog(cfg)
    try:
        stage = VerifyStage(
            catalog,
            func,
            cache_root=cfg.cache_root,
            target_dir=cfg.target_dir,
            tool_version=cfg.tool_version,
            released=cfg.is_released,
            force=cfg.force_overwrite,
            fail_on_warning=cfg.fail_on_warning,
            workers=cfg.workers,
        )
        outcome = stage.run(strict=False)
    except EOBuildError as exc:
        _fail(exc)
    finally:
        catalog.save(cfg.resolved_catalog_path)
    _report(outcome)
    _check(outcome)


# ============================================================================
# Placement commands
# ============================================================================


def _coordinates(value: str) -> DependencyDescriptor:
    parts = value.split(":")
    if len(parts) < 2 or not all(parts[:2]):
        raise typer.BadParameter(f"Expected 'group:artifact[:version]', got {value!r}")
    version = parts[2] if len(parts) > 2 and parts[2] else None
    return DependencyDescriptor(group=parts[0], artifact=parts[1], version=version)


@app.command()
def place(
    ctx: typer.Context,
    home: Annotated[
        Optional[Path],
        typer.Option("--home", help="Directory with one unpacked tree per dependency"),
    ] = None,
    output: Annotated[
        Optional[Path], typer.Option("--output", help="Shared output directory")
    ] = None,
    listing: Annotated[
        Optional[Path],
        typer.Option("--dependencies", help="JSON dependency listing restricting the trees"),
    ] = None,
    artifact: Annotated[
        Optional[str],
        typer.Option("--artifact", help="Coordinates of the artifact being built"),
    ] = None,
    rewrite: Annotated[
        Optional[bool], typer.Option("--rewrite/--no-rewrite", help="Overwrite conflicting files")
    ] = None,
) -> None:
    """Copy dependency-provided files into the output directory."""

    cfg = _settings(ctx)
    home = home or cfg.target_dir / "dependencies"
    output = output or cfg.classes_dir
    ledger = PlacementLedger.load(cfg.resolved_placed_path)
    resolver = PlacementResolver(
        output,
        ledger,
        include=cfg.include_binaries,
        exclude=cfg.exclude_binaries,
        rewrite=cfg.rewrite_binaries if rewrite is None else rewrite,
    )
    if listing is not None and artifact is None:
        raise typer.BadParameter("--artifact is required with --dependencies")
    try:
        if listing is None:
            summary = resolver.place_home(home)
        else:
            allowed: set[str] = set()
            for dep in transitive_dependencies(listing, _coordinates(artifact)):
                allowed.update({str(dep), f"{dep.group}:{dep.artifact}"})
            trees = dependency_dirs(home)
            summary = resolver.place({name: tree for name, tree in trees.items() if name in allowed})
    except EOBuildError as exc:
        _fail(exc)
    finally:
        ledger.save(cfg.resolved_placed_path)
    console.print(
        f"[green]✓ placed {summary.placed}[/green], skipped {summary.skipped}, "
        f"conflicts {summary.conflicts}, unplaced {summary.unplaced} "
        f"from {summary.dependencies} dependencies"
    )


@app.command()
def unplace(
    ctx: typer.Context,
    dependency: Annotated[
        Optional[str], typer.Option("--dependency", help="Only files placed by this dependency")
    ] = None,
    output: Annotated[
        Optional[Path], typer.Option("--output", help="Shared output directory")
    ] = None,
    keep_files: Annotated[
        bool, typer.Option("--keep-files", help="Only update the ledger")
    ] = False,
) -> None:
    """Remove previously placed files and flag their records as unplaced."""

    cfg = _settings(ctx)
    output = output or cfg.classes_dir
    ledger = PlacementLedger.load(cfg.resolved_placed_path)
    records = [
        record
        for record in ledger.active()
        if dependency is None or record.dependency == dependency
    ]
    removed = 0
    if not keep_files:
        for record in records:
            path = output / record.target
            if path.is_file():
                path.unlink()
                removed += 1
    if dependency is None:
        count = ledger.unplace_all()
    else:
        count = ledger.unplace_dependency(dependency)
    ledger.save(cfg.resolved_placed_path)
    console.print(f"[green]✓ {count} record(s) unplaced[/green], {removed} file(s) deleted")


# ============================================================================
# Config commands
# ============================================================================


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print the effective settings as JSON."""

    cfg = _settings(ctx)
    payload = cfg.model_dump(mode="json")
    payload["is_released"] = cfg.is_released
    payload["catalog"] = str(cfg.resolved_catalog_path)
    payload["placed"] = str(cfg.resolved_placed_path)
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
