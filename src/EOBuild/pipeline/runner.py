# === NAVMAP v1 ===
# {
#   "module": "EOBuild.pipeline.runner",
#   "purpose": "Stage runner fanning per-unit work across a worker pool",
#   "sections": [
#     {"id": "workitem", "name": "WorkItem", "anchor": "class-workitem", "kind": "class"},
#     {"id": "stageplan", "name": "StagePlan", "anchor": "class-stageplan", "kind": "class"},
#     {"id": "stageoptions", "name": "StageOptions", "anchor": "class-stageoptions", "kind": "class"},
#     {"id": "stageerror", "name": "StageError", "anchor": "class-stageerror", "kind": "class"},
#     {"id": "itemoutcome", "name": "ItemOutcome", "anchor": "class-itemoutcome", "kind": "class"},
#     {"id": "stageoutcome", "name": "StageOutcome", "anchor": "class-stageoutcome", "kind": "class"},
#     {"id": "run-stage", "name": "run_stage", "anchor": "function-run-stage", "kind": "function"},
#     {"id": "raise-for-failures", "name": "raise_for_failures", "anchor": "function-raise-for-failures", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Stage runner shared by the cached pipeline stages.

Stages describe their units as a :class:`StagePlan` and hand the runner a
worker that processes one unit.  The runner takes care of concurrency and
bookkeeping: a failing unit is recorded as a :class:`StageError` and never
stops its siblings, and :func:`raise_for_failures` turns the collected errors
into a single :class:`~EOBuild.errors.RunFailed` once the stage is over.
Units are never retried here; retry policy belongs to the producers.
"""

from __future__ import annotations

import concurrent.futures as cf
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from EOBuild.errors import RunFailed
from EOBuild.logging import get_logger, log_event

__all__ = [
    "ItemOutcome",
    "StageError",
    "StageOptions",
    "StageOutcome",
    "StagePlan",
    "WorkItem",
    "raise_for_failures",
    "run_stage",
]

ItemStatus = str  # Allowed: "regenerated", "reused", "skipped", "failure"
_STATUSES = ("regenerated", "reused", "skipped", "failure")


@dataclass(frozen=True)
class WorkItem:
    """Immutable description of a single unit of work."""

    item_id: str


@dataclass(frozen=True)
class StagePlan:
    """Deterministic plan enumerating the items a stage must execute."""

    stage_name: str
    items: Sequence[WorkItem]

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class StageOptions:
    """Execution knobs shared by all stages."""

    workers: int = 1


@dataclass
class StageError:
    """Failure of one unit, kept for the end-of-stage report."""

    stage: str
    item_id: str
    category: str
    message: str
    cause: BaseException | None = None

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


@dataclass
class ItemOutcome:
    """Worker outcome normalised for runner bookkeeping."""

    status: ItemStatus
    duration_s: float = 0.0
    result: Mapping[str, Any] = field(default_factory=dict)
    error: StageError | None = None


@dataclass
class StageOutcome:
    """Summary returned by :func:`run_stage`."""

    stage: str
    scheduled: int
    regenerated: int
    reused: int
    skipped: int
    failed: int
    wall_ms: float
    errors: Sequence[StageError]

    @property
    def succeeded(self) -> int:
        return self.regenerated + self.reused + self.skipped

    @property
    def failed_identifiers(self) -> tuple[str, ...]:
        return tuple(error.item_id for error in self.errors)


def _now() -> float:
    return time.perf_counter()


def _call_worker(
    stage: str, worker: Callable[[WorkItem], ItemOutcome], item: WorkItem
) -> ItemOutcome:
    started = _now()
    try:
        outcome = worker(item)
    except Exception as exc:
        return ItemOutcome(
            status="failure",
            duration_s=_now() - started,
            error=StageError(
                stage=stage,
                item_id=item.item_id,
                category=type(exc).__name__,
                message=str(exc),
                cause=exc,
            ),
        )
    if not isinstance(outcome, ItemOutcome) or outcome.status not in _STATUSES:
        return ItemOutcome(
            status="failure",
            duration_s=_now() - started,
            error=StageError(
                stage=stage,
                item_id=item.item_id,
                category="contract",
                message=f"Worker for {item.item_id} returned {outcome!r}",
            ),
        )
    if outcome.duration_s <= 0.0:
        outcome.duration_s = _now() - started
    return outcome


def _create_executor(options: StageOptions) -> cf.Executor | None:
    workers = max(1, int(options.workers))
    if workers <= 1:
        return None
    return cf.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="eobuild-stage")


def run_stage(
    plan: StagePlan,
    worker: Callable[[WorkItem], ItemOutcome],
    options: StageOptions | None = None,
) -> StageOutcome:
    """Execute ``plan`` with ``worker``, one call per item."""

    options = options or StageOptions()
    logger = get_logger(
        f"EOBuild.pipeline.runner.{plan.stage_name}",
        base_fields={"stage": plan.stage_name},
    )
    counts = {status: 0 for status in _STATUSES}
    errors: list[StageError] = []
    wall_start = _now()

    def _handle(item: WorkItem, outcome: ItemOutcome) -> None:
        counts[outcome.status] += 1
        if outcome.status != "failure":
            return
        error = outcome.error or StageError(
            stage=plan.stage_name,
            item_id=item.item_id,
            category="runtime",
            message="Worker reported failure without error",
        )
        errors.append(error)
        log_event(
            logger,
            "error",
            f"Failed to process {item.item_id}: {error.message}",
            identifier=item.item_id,
            error_code=error.category,
        )

    executor = _create_executor(options)
    try:
        if executor is None:
            for item in plan:
                _handle(item, _call_worker(plan.stage_name, worker, item))
        else:
            futures = [
                (item, executor.submit(_call_worker, plan.stage_name, worker, item))
                for item in plan
            ]
            # Consume in plan order so logs and reports stay deterministic.
            for item, future in futures:
                _handle(item, future.result())
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    outcome = StageOutcome(
        stage=plan.stage_name,
        scheduled=len(plan),
        regenerated=counts["regenerated"],
        reused=counts["reused"],
        skipped=counts["skipped"],
        failed=counts["failure"],
        wall_ms=(_now() - wall_start) * 1000.0,
        errors=tuple(errors),
    )
    log_event(
        logger,
        "info",
        f"Stage '{plan.stage_name}' processed {outcome.scheduled} unit(s)",
        regenerated=outcome.regenerated,
        reused=outcome.reused,
        skipped=outcome.skipped,
        failed=outcome.failed,
        wall_ms=round(outcome.wall_ms, 2),
    )
    return outcome


def raise_for_failures(outcome: StageOutcome) -> StageOutcome:
    """Raise :class:`RunFailed` naming every failed unit, else return ``outcome``."""

    if outcome.errors:
        raise RunFailed(
            outcome.stage,
            [(error.item_id, f"{error.category}: {error.message}") for error in outcome.errors],
        )
    return outcome
