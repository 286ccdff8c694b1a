"""Shared fixtures for the build engine test-suite."""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from EOBuild.catalog import ObjectCatalog
from EOBuild.pipeline import DirectoryObjectionary


@pytest.fixture
def catalog() -> ObjectCatalog:
    return ObjectCatalog()


@pytest.fixture
def objects(tmp_path: Path) -> Path:
    """Local objectionary tree holding ``foo.x.main`` and ``org.eolang.io.stdout``."""

    root = tmp_path / "objectionary"
    for relative, body in {
        "foo/x/main.eo": "[] > main\n",
        "org/eolang/io/stdout.eo": "[text] > stdout\n",
    }.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
    return root


@pytest.fixture
def objectionary(objects: Path) -> DirectoryObjectionary:
    return DirectoryObjectionary(objects)


@pytest.fixture
def shift_mtime():
    """Return a helper moving a file's modification time by ``seconds``."""

    def _shift(path: Path, seconds: float) -> float:
        stamp = time.time() + seconds
        os.utime(path, (stamp, stamp))
        return path.stat().st_mtime

    return _shift
