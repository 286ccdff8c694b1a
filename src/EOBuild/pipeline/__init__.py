"""Cached compiler pipeline stages and the runner that drives them."""

from .diagnostics import DiagnosticCounts, Severity, count_diagnostics, gate
from .objectionary import (
    DEFAULT_COMMIT_URL,
    DEFAULT_OBJECTIONARY_URL,
    DirectoryObjectionary,
    Objectionary,
    RemoteObjectionary,
    is_commit_hash,
    object_path,
    resolve_commit,
)
from .runner import (
    ItemOutcome,
    StageError,
    StageOptions,
    StageOutcome,
    StagePlan,
    WorkItem,
    raise_for_failures,
    run_stage,
)
from .stages import HASH_LENGTH, PullStage, TransformResult, VerifyStage, narrow_hash

__all__ = [
    "DEFAULT_COMMIT_URL",
    "DEFAULT_OBJECTIONARY_URL",
    "DiagnosticCounts",
    "DirectoryObjectionary",
    "HASH_LENGTH",
    "ItemOutcome",
    "Objectionary",
    "PullStage",
    "RemoteObjectionary",
    "Severity",
    "StageError",
    "StageOptions",
    "StageOutcome",
    "StagePlan",
    "TransformResult",
    "VerifyStage",
    "WorkItem",
    "count_diagnostics",
    "gate",
    "is_commit_hash",
    "narrow_hash",
    "object_path",
    "raise_for_failures",
    "resolve_commit",
    "run_stage",
]
