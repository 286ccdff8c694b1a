# === NAVMAP v1 ===
# {
#   "module": "EOBuild.placement.resolver",
#   "purpose": "Merge dependency file trees into one output tree with collision bookkeeping",
#   "sections": [
#     {"id": "placementsummary", "name": "PlacementSummary", "anchor": "class-placementsummary", "kind": "class"},
#     {"id": "should-place-file", "name": "should_place_file", "anchor": "function-should-place-file", "kind": "function"},
#     {"id": "dependency-dirs", "name": "dependency_dirs", "anchor": "function-dependency-dirs", "kind": "function"},
#     {"id": "placementresolver", "name": "PlacementResolver", "anchor": "class-placementresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Binary placement across dependency trees.

Dependency archives are unpacked elsewhere into one directory per dependency.
The resolver copies their files into a single output tree exactly once:
trees are walked in the order given, the first dependency to place a path
owns it, and later dependencies only overwrite differing content when rewrite
mode is on.  Every decision is recorded in the :class:`PlacementLedger` so the
next run knows who placed what.
"""

from __future__ import annotations

import fnmatch
import logging
from collections import defaultdict
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from EOBuild.errors import PlacementFailed
from EOBuild.io import atomic_write_bytes
from EOBuild.logging import get_logger, log_event
from EOBuild.placement.ledger import PlacementLedger

__all__ = [
    "PlacementResolver",
    "PlacementSummary",
    "dependency_dirs",
    "should_place_file",
]

_STAGE = "place"


@dataclass
class PlacementSummary:
    """Counts produced by one placement pass."""

    dependencies: int = 0
    placed: int = 0
    skipped: int = 0
    conflicts: int = 0
    unplaced: int = 0
    per_dependency: dict[str, int] = field(default_factory=dict)


def should_place_file(
    relative: str, include: Sequence[str] = (), exclude: Sequence[str] = ()
) -> bool:
    """Return ``True`` when ``relative`` passes the include/exclude globs.

    Exclusions win; an empty include list admits every file.
    """

    for pattern in exclude:
        if fnmatch.fnmatch(relative, pattern):
            return False
    if not include:
        return True
    return any(fnmatch.fnmatch(relative, pattern) for pattern in include)


def dependency_dirs(home: Path) -> dict[str, Path]:
    """Return unpacked dependency trees under ``home`` keyed by directory name."""

    home = Path(home)
    if not home.is_dir():
        return {}
    return {child.name: child for child in sorted(home.iterdir()) if child.is_dir()}


def _walk(tree: Path) -> Iterator[Path]:
    for path in sorted(tree.rglob("*")):
        if path.is_file():
            yield path


def _same_length(first: Path, second: Path) -> bool:
    # Weak equality: equal sizes are taken as equal content.
    return first.stat().st_size == second.stat().st_size


class PlacementResolver:
    """Copy dependency-provided files into ``output`` without clobbering."""

    def __init__(
        self,
        output: Path,
        ledger: PlacementLedger,
        *,
        include: Sequence[str] = (),
        exclude: Sequence[str] = (),
        rewrite: bool = False,
    ) -> None:
        self.output = Path(output)
        self.ledger = ledger
        self.include = tuple(include)
        self.exclude = tuple(exclude)
        self.rewrite = rewrite
        self.logger = get_logger(__name__, base_fields={"stage": _STAGE})

    def place_home(self, home: Path) -> PlacementSummary:
        """Place every dependency tree found under ``home``."""

        home = Path(home)
        if not home.exists():
            log_event(
                self.logger,
                "info",
                f"The directory {home} is absent, nothing to place from it",
            )
            return PlacementSummary()
        return self.place(dependency_dirs(home))

    def place(self, trees: Mapping[str, Path]) -> PlacementSummary:
        """Place files of every tree in iteration order and reconcile the ledger."""

        summary = PlacementSummary(dependencies=len(trees))
        suppliers: defaultdict[str, list[str]] = defaultdict(list)
        already = self.ledger.placed_dependencies()
        for dependency, tree in trees.items():
            if dependency in already:
                log_event(self.logger, "debug", f"Found placed binaries from {dependency}")
            copied = self._place_dependency(dependency, Path(tree), summary, suppliers)
            summary.per_dependency[dependency] = copied
        summary.unplaced = self._reconcile(trees, suppliers, summary)
        if summary.placed == 0:
            log_event(
                self.logger,
                "info",
                f"No binary files placed from {summary.dependencies} dependencies into {self.output}",
            )
        else:
            log_event(
                self.logger,
                "info",
                f"Placed {summary.placed} binary file(s) found in {summary.dependencies} "
                f"dependencies, into {self.output}",
                placed=summary.placed,
                skipped=summary.skipped,
                conflicts=summary.conflicts,
            )
        return summary

    def _place_dependency(
        self,
        dependency: str,
        tree: Path,
        summary: PlacementSummary,
        suppliers: defaultdict[str, list[str]],
    ) -> int:
        copied = 0
        total = 0
        for file in _walk(tree):
            total += 1
            relative = file.relative_to(tree).as_posix()
            if not should_place_file(relative, self.include, self.exclude):
                continue
            suppliers[relative].append(dependency)
            if self._place_file(dependency, file, relative, summary):
                copied += 1
        log_event(
            self.logger,
            "debug",
            f"Placed {copied} binary file(s) out of {total}, found in {dependency}, to {self.output}",
        )
        return copied

    def _place_file(
        self, dependency: str, file: Path, relative: str, summary: PlacementSummary
    ) -> bool:
        target = self.output / relative
        with self.ledger.guard(relative):
            record = self.ledger.find(relative)
            size = self._size(file, target)
            if record is None or record.unplaced:
                self._copy(file, target)
                self.ledger.place(relative, dependency, size)
                summary.placed += 1
                return True
            if not target.exists():
                log_event(
                    self.logger,
                    "info",
                    f"The file {file} has been placed to {target}, but now it's gone, replacing",
                )
                self._copy(file, target)
                self.ledger.place(relative, dependency, size)
                summary.placed += 1
                return True
            if _same_length(target, file):
                if record.dependency != dependency:
                    log_event(
                        self.logger,
                        "debug",
                        f"The same file {file} is already placed to {target} by "
                        f"{record.dependency}, skipping",
                    )
                self.ledger.place(relative, record.dependency, size)
                summary.skipped += 1
                return False
            if not self.rewrite:
                log_event(
                    self.logger,
                    "warning",
                    f"File {file} ({size} bytes) conflicts with {target} "
                    f"({target.stat().st_size} bytes) placed by {record.dependency}, skipping",
                    identifier=relative,
                    dependency=dependency,
                    owner=record.dependency,
                )
                self.ledger.place(relative, record.dependency, target.stat().st_size)
                summary.conflicts += 1
                summary.skipped += 1
                return False
            log_event(
                self.logger,
                "debug",
                f"File {file} ({size} bytes) was already placed at {target} "
                f"({target.stat().st_size} bytes) by {record.dependency}, replacing",
            )
            self._copy(file, target)
            self.ledger.place(relative, dependency, size)
            summary.placed += 1
            return True

    def _size(self, file: Path, target: Path) -> int:
        try:
            return file.stat().st_size
        except OSError as exc:
            raise PlacementFailed(
                f"Failed to place {file} to home {self.output} with path {target}: {exc}",
                file=file,
                target=target,
            ) from exc

    def _copy(self, file: Path, target: Path) -> None:
        try:
            atomic_write_bytes(target, file.read_bytes())
        except OSError as exc:
            raise PlacementFailed(
                f"Failed to place {file} to home {self.output} with path {target}: {exc}",
                file=file,
                target=target,
            ) from exc

    def _reconcile(
        self,
        trees: Mapping[str, Path],
        suppliers: Mapping[str, list[str]],
        summary: PlacementSummary,
    ) -> int:
        """Re-place records from a current supplier or mark them unplaced."""

        unplaced = 0
        for record in self.ledger.active():
            current = suppliers.get(record.target, [])
            if record.dependency in current:
                continue
            if current:
                owner = current[0]
                file = Path(trees[owner]) / record.target
                target = self.output / record.target
                with self.ledger.guard(record.target):
                    size = self._size(file, target)
                    self._copy(file, target)
                    self.ledger.place(record.target, owner, size)
                summary.placed += 1
                summary.per_dependency[owner] = summary.per_dependency.get(owner, 0) + 1
                log_event(
                    self.logger,
                    "info",
                    f"{record.target} is no longer supplied by {record.dependency}, "
                    f"placed the one from {owner} instead",
                )
                continue
            self.ledger.unplace(record.target)
            unplaced += 1
            log_event(
                self.logger,
                "debug",
                f"{record.target} is no longer supplied by {record.dependency}, marked unplaced",
            )
        return unplaced
