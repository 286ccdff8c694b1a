# === NAVMAP v1 ===
# {
#   "module": "EOBuild.io",
#   "purpose": "Atomic file writes, JSONL persistence and key locks shared by stores",
#   "sections": [
#     {"id": "atomic-write-bytes", "name": "atomic_write_bytes", "anchor": "function-atomic-write-bytes", "kind": "function"},
#     {"id": "as-bytes", "name": "as_bytes", "anchor": "function-as-bytes", "kind": "function"},
#     {"id": "jsonl-load", "name": "jsonl_load", "anchor": "function-jsonl-load", "kind": "function"},
#     {"id": "jsonl-save", "name": "jsonl_save", "anchor": "function-jsonl-save", "kind": "function"},
#     {"id": "key-lock", "name": "key_lock", "anchor": "function-key-lock", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers shared by the cache, the catalog and the placement ledger.

All writes that other workers or later runs may observe go through
:func:`atomic_write_bytes` so a reader never sees a partially written target
or cache entry.  Stores persist their records as JSON lines through
:func:`jsonl_save`, and writers of the same cache key serialise on
:func:`key_lock`.
"""

from __future__ import annotations

import contextlib
import hashlib
import os
import uuid
from collections.abc import Iterable, Iterator
from pathlib import Path

import jsonlines
from filelock import FileLock

__all__ = [
    "as_bytes",
    "atomic_write_bytes",
    "jsonl_load",
    "jsonl_save",
    "key_lock",
]

_LOCK_TIMEOUT_S = 60.0


def as_bytes(payload: str | bytes) -> bytes:
    """Return ``payload`` encoded as UTF-8 when it is text."""

    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    raise TypeError(f"Artifact payload must be str or bytes, got {type(payload).__name__}")


def atomic_write_bytes(path: Path, data: bytes) -> Path:
    """Write ``data`` to a temporary sibling and atomically replace ``path``."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with tmp.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return path


def jsonl_load(path: Path) -> list[dict]:
    """Return all JSON objects stored in ``path`` (empty list when absent)."""

    path = Path(path)
    if not path.exists():
        return []
    with jsonlines.open(path, mode="r") as reader:
        return [row for row in reader.iter(type=dict, skip_empty=True)]


def jsonl_save(path: Path, rows: Iterable[dict]) -> Path:
    """Atomically replace ``path`` with ``rows`` serialised as JSON lines."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with jsonlines.open(tmp, mode="w", sort_keys=True) as writer:
            writer.write_all(rows)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return path


@contextlib.contextmanager
def key_lock(lock_dir: Path, key: str, *, timeout: float = _LOCK_TIMEOUT_S) -> Iterator[None]:
    """Hold a cross-process lock dedicated to ``key`` for the ``with`` block."""

    lock_dir = Path(lock_dir)
    lock_dir.mkdir(parents=True, exist_ok=True)
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]
    lock = FileLock(str(lock_dir / f"{digest}.lock"), timeout=timeout, thread_local=False)
    with lock:
        yield None
