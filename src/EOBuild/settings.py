"""
Pydantic settings for the build engine.

Values come from (highest first) CLI overrides, ``EOBUILD_*`` environment
variables and the defaults below.  Paths are expanded and made absolute once
so every stage sees the same locations.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from EOBuild.cache.layout import DEFAULT_RELEASE_PATTERN
from EOBuild.cache.layout import is_released as _is_released
from EOBuild.pipeline.objectionary import (
    DEFAULT_COMMIT_URL,
    DEFAULT_OBJECTIONARY_URL,
    is_commit_hash,
)
from EOBuild.pipeline.stages import narrow_hash as _narrow_hash

__all__ = ["BuildCfg", "LogFormat", "LogLevel"]


class LogLevel(str, Enum):
    """Supported logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Supported log output formats."""

    CONSOLE = "console"
    JSON = "json"


class BuildCfg(BaseSettings):
    """Build configuration shared by every command."""

    model_config = SettingsConfigDict(
        env_prefix="EOBUILD_",
        case_sensitive=False,
        extra="ignore",
    )

    target_dir: Path = Field(Path("target"), description="Directory receiving stage outputs")
    cache_root: Path = Field(
        Path("~/.eo").expanduser(),
        description="Root of the content-addressed cache shared across builds",
    )
    tool_version: str = Field("0.0.0", description="Version of the compiler toolchain")
    release_pattern: str = Field(
        DEFAULT_RELEASE_PATTERN,
        description="Regular expression a released tool version must match",
    )
    force_overwrite: bool = Field(False, description="Regenerate artifacts unconditionally")
    fail_on_warning: bool = Field(False, description="Treat warning diagnostics as failures")
    offline: bool = Field(False, description="Do not pull any sources")
    commit_hash: str | None = Field(
        None, description="Objectionary commit the sources are pinned to (default: resolve tag)"
    )
    tag: str = Field("master", description="Objectionary tag resolved when no hash is pinned")
    commit_url: str = Field(
        DEFAULT_COMMIT_URL,
        description="URL template with a {tag} placeholder answering the commit of a tag",
    )
    objectionary_url: str = Field(
        DEFAULT_OBJECTIONARY_URL,
        description="URL template with {hash} and {path} placeholders",
    )
    workers: int = Field(1, ge=1, description="Units processed concurrently per stage")
    include_binaries: Annotated[tuple[str, ...], NoDecode] = Field(
        (), description="Glob patterns of dependency files to place (empty: all)"
    )
    exclude_binaries: Annotated[tuple[str, ...], NoDecode] = Field(
        (), description="Glob patterns of dependency files never placed"
    )
    rewrite_binaries: bool = Field(
        False, description="Overwrite placed files whose size differs"
    )
    catalog_path: Path | None = Field(
        None, description="Catalog file (default: target_dir/eo-foreign.jsonl)"
    )
    placed_path: Path | None = Field(
        None, description="Placement ledger (default: target_dir/eo-placed.jsonl)"
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Root logging level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Pretty console or JSON lines")

    @field_validator("target_dir", "cache_root", "catalog_path", "placed_path", mode="before")
    @classmethod
    def expand_paths(cls, v: Any) -> Any:
        """Expand user home and make absolute."""
        if v is None:
            return None
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().resolve()
        return v

    @field_validator("include_binaries", "exclude_binaries", mode="before")
    @classmethod
    def split_patterns(cls, v: Any) -> Any:
        """Accept comma separated patterns from the environment."""
        if isinstance(v, str):
            return tuple(part.strip() for part in v.split(",") if part.strip())
        return v

    @field_validator("release_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid release pattern {v!r}: {exc}") from exc
        return v

    @field_validator("tool_version", "tag")
    @classmethod
    def strip_value(cls, v: str) -> str:
        value = v.strip()
        if not value:
            raise ValueError("Value cannot be empty")
        return value

    @field_validator("commit_hash")
    @classmethod
    def validate_commit_hash(cls, v: str | None) -> str | None:
        if v is None:
            return None
        value = v.strip()
        if not is_commit_hash(value):
            raise ValueError(f"{value!r} is not a commit hash, pin a SHA or set a tag instead")
        return value.lower()

    @property
    def is_released(self) -> bool:
        return _is_released(self.tool_version, self.release_pattern)

    @property
    def narrow_hash(self) -> str | None:
        if self.commit_hash is None:
            return None
        return _narrow_hash(self.commit_hash)

    @property
    def resolved_catalog_path(self) -> Path:
        return self.catalog_path or self.target_dir / "eo-foreign.jsonl"

    @property
    def resolved_placed_path(self) -> Path:
        return self.placed_path or self.target_dir / "eo-placed.jsonl"

    @property
    def classes_dir(self) -> Path:
        return self.target_dir / "classes"
