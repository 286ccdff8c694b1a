"""Transitive dependency filtering ahead of placement and compilation."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from EOBuild.errors import ConfigError

__all__ = [
    "RUNTIME",
    "DependencyDescriptor",
    "filter_dependencies",
    "load_dependencies",
    "transitive_dependencies",
]


@dataclass(frozen=True)
class DependencyDescriptor:
    """Coordinates of a dependency artifact plus its scope."""

    group: str
    artifact: str
    scope: str = "compile"
    version: Optional[str] = None

    def same_artifact(self, other: "DependencyDescriptor") -> bool:
        return self.group == other.group and self.artifact == other.artifact

    def __str__(self) -> str:
        parts = [self.group, self.artifact]
        if self.version:
            parts.append(self.version)
        return ":".join(parts)


# The runtime is always supplied by the build itself.
RUNTIME = DependencyDescriptor(group="org.eolang", artifact="eo-runtime")

DependencyPredicate = Callable[[DependencyDescriptor], bool]


def _not_runtime(runtime: DependencyDescriptor) -> DependencyPredicate:
    return lambda dep: not dep.same_artifact(runtime)


def _not_same(current: DependencyDescriptor) -> DependencyPredicate:
    return lambda dep: not dep.same_artifact(current)


def _not_testing(dep: DependencyDescriptor) -> bool:
    return "test" not in (dep.scope or "")


def filter_dependencies(
    dependencies: Iterable[DependencyDescriptor],
    current: DependencyDescriptor,
    *,
    runtime: DependencyDescriptor = RUNTIME,
) -> list[DependencyDescriptor]:
    """Drop the runtime, self references and test-scoped entries, keeping order."""

    predicates: Sequence[DependencyPredicate] = (
        _not_runtime(runtime),
        _not_same(current),
        _not_testing,
    )
    return [dep for dep in dependencies if all(check(dep) for check in predicates)]


def _descriptor(row: Mapping[str, Any], origin: Path) -> DependencyDescriptor:
    try:
        group = str(row["groupId"])
        artifact = str(row["artifactId"])
    except KeyError as exc:
        raise ConfigError(f"Dependency entry in {origin} lacks {exc.args[0]}: {row}") from exc
    scopes = row.get("scopes")
    if isinstance(scopes, list):
        scope = ",".join(str(item) for item in scopes) or "compile"
    else:
        scope = str(row.get("scope") or "compile")
    version = row.get("version")
    return DependencyDescriptor(
        group=group,
        artifact=artifact,
        scope=scope,
        version=str(version) if version is not None else None,
    )


def load_dependencies(path: Path) -> list[DependencyDescriptor]:
    """Read a JSON dependency listing with an ``artifacts`` array."""

    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Dependency listing {path} does not exist") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Dependency listing {path} is not valid JSON: {exc}") from exc
    artifacts = payload.get("artifacts") if isinstance(payload, dict) else None
    if not isinstance(artifacts, list):
        raise ConfigError(f"Dependency listing {path} has no 'artifacts' array")
    return [_descriptor(row, path) for row in artifacts]


def transitive_dependencies(
    path: Path,
    current: DependencyDescriptor,
    *,
    runtime: DependencyDescriptor = RUNTIME,
) -> list[DependencyDescriptor]:
    return filter_dependencies(load_dependencies(path), current, runtime=runtime)
