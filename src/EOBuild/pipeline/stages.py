# === NAVMAP v1 ===
# {
#   "module": "EOBuild.pipeline.stages",
#   "purpose": "Cached pull and verify stages driven by the object catalog",
#   "sections": [
#     {"id": "narrow-hash", "name": "narrow_hash", "anchor": "function-narrow-hash", "kind": "function"},
#     {"id": "transformresult", "name": "TransformResult", "anchor": "class-transformresult", "kind": "class"},
#     {"id": "pullstage", "name": "PullStage", "anchor": "class-pullstage", "kind": "class"},
#     {"id": "verifystage", "name": "VerifyStage", "anchor": "class-verifystage", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Cached pipeline stages.

Each stage walks the catalog entries that lack its mark, materialises one
artifact per unit through :func:`~EOBuild.footprint.cached_footprint`, and
updates the catalog on success.  Units fail independently; the stage raises
:class:`~EOBuild.errors.RunFailed` naming every failed unit once all of them
have been processed.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from EOBuild.cache.layout import CacheKey
from EOBuild.cache.store import ContentCache
from EOBuild.catalog.models import CatalogEntry
from EOBuild.catalog.store import ObjectCatalog
from EOBuild.errors import CatalogError, ConfigError, GenerationFailed, IOFailure
from EOBuild.footprint import REGENERATED, REUSED, SKIPPED, FootprintTally, cached_footprint
from EOBuild.io import atomic_write_bytes
from EOBuild.logging import get_logger, log_event
from EOBuild.pipeline.diagnostics import DiagnosticCounts, count_diagnostics, gate
from EOBuild.pipeline.objectionary import Objectionary, is_commit_hash, object_path
from EOBuild.pipeline.runner import (
    ItemOutcome,
    StageOptions,
    StageOutcome,
    StagePlan,
    WorkItem,
    raise_for_failures,
    run_stage,
)

__all__ = [
    "DIAGNOSTICS_SUFFIX",
    "HASH_LENGTH",
    "PullStage",
    "TransformResult",
    "VerifyStage",
    "narrow_hash",
]

HASH_LENGTH = 7
DIAGNOSTICS_SUFFIX = ".diagnostics.json"


def narrow_hash(commit_hash: str) -> str:
    """Return the short form of a commit hash used in cache keys.

    Only commit hashes pin a revision; a branch or tag name has to be
    resolved with :func:`~EOBuild.pipeline.objectionary.resolve_commit` first.
    """

    value = (commit_hash or "").strip()
    if not value:
        raise ConfigError("Commit hash cannot be empty")
    if not is_commit_hash(value):
        raise ConfigError(f"'{value}' is not a commit hash, resolve it to a commit first")
    return value[:HASH_LENGTH].lower()


@dataclass(frozen=True)
class TransformResult:
    """Artifact produced by a verify/transform collaborator."""

    payload: Union[str, bytes]
    diagnostics: Optional[DiagnosticCounts] = None


Transform = Callable[[Path], Union[TransformResult, str, bytes]]


def _empty_outcome(stage: str) -> StageOutcome:
    return StageOutcome(
        stage=stage,
        scheduled=0,
        regenerated=0,
        reused=0,
        skipped=0,
        failed=0,
        wall_ms=0.0,
        errors=(),
    )


class PullStage:
    """Materialise the source of every unit not pulled yet under ``<target>/4-pull``."""

    STAGE = "pull"
    DIR = "4-pull"
    CACHE = "pulled"
    EXTENSION = "eo"

    def __init__(
        self,
        catalog: ObjectCatalog,
        objectionary: Objectionary,
        *,
        cache_root: Path,
        target_dir: Path,
        tool_version: str,
        commit_hash: str,
        released: bool,
        force: bool = False,
        offline: bool = False,
        workers: int = 1,
    ) -> None:
        self.catalog = catalog
        self.objectionary = objectionary
        self.cache = ContentCache(cache_root, self.CACHE)
        self.base = Path(target_dir) / self.DIR
        self.tool_version = tool_version
        self.offline = offline
        self.content_hash = "" if offline else narrow_hash(commit_hash)
        self.released = released
        self.force = force
        self.options = StageOptions(workers=workers)
        self.logger = get_logger(__name__, base_fields={"stage": self.STAGE})

    def _pull(self, item: WorkItem) -> ItemOutcome:
        entry = self.catalog.find(item.item_id)
        if entry is None:
            raise CatalogError(f"Unknown catalog identifier '{item.item_id}'")
        relative = object_path(entry.identifier, self.EXTENSION)
        tally = FootprintTally()

        def _fetch(_: Path) -> str:
            log_event(
                self.logger,
                "debug",
                f"Pulling {entry.identifier} object from objectionary with hash {self.content_hash}",
                identifier=entry.identifier,
            )
            return self.objectionary.get(entry.identifier)

        footprint = cached_footprint(
            _fetch,
            self.cache,
            tool_version=self.tool_version,
            content_hash=self.content_hash,
            relative_path=relative,
            released=self.released,
            force=self.force,
            tally=tally,
        )
        try:
            path = footprint.apply(Path(), self.base / relative)
        except GenerationFailed as exc:
            raise GenerationFailed(
                f"Failed to pull '{entry.identifier}' earlier discovered at "
                f"{entry.discovered_at}: {exc}"
            ) from exc
        self.catalog.pulled(entry.identifier, path, self.content_hash)
        self.catalog.mark_stage(entry.identifier, self.STAGE)
        return ItemOutcome(status=tally.last or SKIPPED, result={"path": str(path)})

    def run(self, *, strict: bool = True) -> StageOutcome:
        if self.offline:
            log_event(
                self.logger, "info", "No programs were pulled because offline mode is set"
            )
            return _empty_outcome(self.STAGE)
        start = time.monotonic()
        plan = StagePlan(
            stage_name=self.STAGE,
            items=[
                WorkItem(entry.identifier)
                for entry in self.catalog.entries_missing_stage(self.STAGE)
            ],
        )
        outcome = run_stage(plan, self._pull, self.options)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if not len(plan):
            log_event(self.logger, "info", f"No programs were pulled in {elapsed_ms}ms")
        else:
            names = [item.item_id for item in plan]
            log_event(
                self.logger,
                "info",
                f"{len(plan)} program(s) were pulled in {elapsed_ms}ms: {names}",
            )
        return raise_for_failures(outcome) if strict else outcome


class VerifyStage:
    """Transform every pulled unit and gate the result on its diagnostics."""

    STAGE = "verify"
    DIR = "5-verify"
    CACHE = "verify"
    EXTENSION = "xmir"

    def __init__(
        self,
        catalog: ObjectCatalog,
        transform: Transform,
        *,
        cache_root: Path,
        target_dir: Path,
        tool_version: str,
        released: bool,
        force: bool = False,
        fail_on_warning: bool = False,
        extension: str = EXTENSION,
        locate: Optional[Callable[[CatalogEntry], Path]] = None,
        diagnostics: Callable[[bytes], DiagnosticCounts] = count_diagnostics,
        workers: int = 1,
    ) -> None:
        self.catalog = catalog
        self.transform = transform
        self.cache = ContentCache(cache_root, self.CACHE)
        self.base = Path(target_dir) / self.DIR
        self.tool_version = tool_version
        self.released = released
        self.force = force
        self.fail_on_warning = fail_on_warning
        self.extension = extension
        self.locate = locate
        self.diagnostics = diagnostics
        self.options = StageOptions(workers=workers)
        self.logger = get_logger(__name__, base_fields={"stage": self.STAGE})

    def _source(self, entry: CatalogEntry) -> Path:
        if self.locate is not None:
            return Path(self.locate(entry))
        if entry.source_path is None:
            raise CatalogError(
                f"'{entry.identifier}' discovered at {entry.discovered_at} has no source to verify"
            )
        return entry.source_path

    def _record(
        self,
        counts: Optional[DiagnosticCounts],
        sidecar: Path,
        key: Optional[CacheKey],
    ) -> None:
        """Keep reported counts next to the artifact and in the cache."""

        if counts is None:
            sidecar.unlink(missing_ok=True)
            return
        payload = json.dumps(counts.as_dict(), sort_keys=True)
        try:
            atomic_write_bytes(sidecar, payload.encode("utf-8"))
        except OSError as exc:
            raise IOFailure(
                f"Failed to record diagnostics at {sidecar}: {exc}", path=sidecar
            ) from exc
        if key is not None:
            self.cache.write(key, payload)

    def _restore(self, sidecar: Path, key: Optional[CacheKey]) -> None:
        if key is not None and self.cache.exists(key):
            self.cache.restore(key, sidecar)
        else:
            sidecar.unlink(missing_ok=True)

    def _verify(self, item: WorkItem) -> ItemOutcome:
        entry = self.catalog.find(item.item_id)
        if entry is None:
            raise CatalogError(f"Unknown catalog identifier '{item.item_id}'")
        if not entry.pulled:
            raise CatalogError(
                f"'{entry.identifier}' discovered at {entry.discovered_at} has not been pulled yet"
            )
        relative = object_path(entry.identifier, self.extension)
        target = self.base / relative
        sidecar = target.with_name(target.name + DIAGNOSTICS_SUFFIX)
        key: Optional[CacheKey] = None
        if entry.content_hash:
            key = CacheKey(
                self.tool_version,
                entry.content_hash,
                relative.with_name(relative.name + DIAGNOSTICS_SUFFIX),
            )
        tally = FootprintTally()
        produced: dict[str, DiagnosticCounts] = {}

        def _transform(source: Path) -> Union[str, bytes]:
            result = self.transform(source)
            if isinstance(result, TransformResult):
                if result.diagnostics is not None:
                    produced["diagnostics"] = result.diagnostics
                return result.payload
            return result

        footprint = cached_footprint(
            _transform,
            self.cache,
            tool_version=self.tool_version,
            content_hash=entry.content_hash,
            relative_path=relative,
            released=self.released,
            force=self.force,
            tally=tally,
        )
        path = footprint.apply(self._source(entry), target)
        counts = produced.get("diagnostics")
        if tally.last == REGENERATED:
            self._record(counts, sidecar, key)
        elif tally.last == REUSED:
            self._restore(sidecar, key)
        if counts is None and sidecar.is_file():
            counts = DiagnosticCounts.from_dict(json.loads(sidecar.read_text(encoding="utf-8")))
        if counts is None:
            counts = self.diagnostics(path.read_bytes())
        gate(
            counts,
            identifier=entry.identifier,
            stage=self.STAGE,
            fail_on_warning=self.fail_on_warning,
            logger=self.logger,
        )
        self.catalog.mark_stage(entry.identifier, self.STAGE)
        return ItemOutcome(
            status=tally.last or SKIPPED,
            result={"path": str(path), **counts.as_dict()},
        )

    def run(self, *, strict: bool = True) -> StageOutcome:
        plan = StagePlan(
            stage_name=self.STAGE,
            items=[
                WorkItem(entry.identifier)
                for entry in self.catalog.entries_missing_stage(self.STAGE)
            ],
        )
        outcome = run_stage(plan, self._verify, self.options)
        return raise_for_failures(outcome) if strict else outcome
