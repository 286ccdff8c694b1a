"""Source object collaborators used by the pull stage.

The pull stage only needs ``get(identifier) -> str``.  Two implementations
ship with the engine: a local directory tree, and a remote HTTP store whose
transient failures are retried here, inside the fetcher, so the build core
itself never retries.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Protocol

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from EOBuild.errors import ConfigError, GenerationFailed

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_COMMIT_URL",
    "DEFAULT_OBJECTIONARY_URL",
    "DirectoryObjectionary",
    "Objectionary",
    "RemoteObjectionary",
    "is_commit_hash",
    "object_path",
    "resolve_commit",
]

DEFAULT_OBJECTIONARY_URL = (
    "https://raw.githubusercontent.com/objectionary/home/{hash}/objects/{path}.eo"
)

DEFAULT_COMMIT_URL = "https://api.github.com/repos/objectionary/home/commits/{tag}"

_COMMIT_HASH = re.compile(r"[0-9a-fA-F]{7,40}")


def is_commit_hash(value: str) -> bool:
    """Return ``True`` when ``value`` looks like a full or abbreviated git SHA."""

    return bool(_COMMIT_HASH.fullmatch(value or ""))


def object_path(identifier: str, extension: str = "") -> Path:
    """Map ``foo.x.main`` to ``foo/x/main`` plus an optional extension."""

    parts = [part for part in identifier.split(".") if part]
    if not parts:
        raise ValueError(f"Invalid object identifier: {identifier!r}")
    relative = Path(*parts)
    if extension:
        relative = relative.with_name(f"{relative.name}.{extension.lstrip('.')}")
    return relative


class Objectionary(Protocol):
    def get(self, identifier: str) -> str: ...


class DirectoryObjectionary:
    """Objects stored as ``<root>/<a>/<b>/<c>.eo`` files."""

    def __init__(self, root: Path, extension: str = "eo") -> None:
        self.root = Path(root)
        self.extension = extension

    def get(self, identifier: str) -> str:
        path = self.root / object_path(identifier, self.extension)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise GenerationFailed(
                f"Object '{identifier}' is absent in {self.root}", source=path
            ) from exc


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def _retrying(attempts: int) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_random_exponential(multiplier=0.5, max=10),
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )


class RemoteObjectionary:
    """Objects fetched over HTTP from a URL template pinned to a commit hash."""

    def __init__(
        self,
        commit_hash: str,
        *,
        url_template: str = DEFAULT_OBJECTIONARY_URL,
        client: Optional[httpx.Client] = None,
        attempts: int = 3,
        timeout: float = 30.0,
    ) -> None:
        self.commit_hash = commit_hash
        self.url_template = url_template
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_client = client is None
        self.attempts = max(1, attempts)

    def url(self, identifier: str) -> str:
        return self.url_template.format(
            hash=self.commit_hash, path=object_path(identifier).as_posix()
        )

    def _fetch(self, url: str) -> str:
        response = self._client.get(url)
        response.raise_for_status()
        return response.text

    def get(self, identifier: str) -> str:
        url = self.url(identifier)
        retrying = _retrying(self.attempts)
        try:
            text = retrying(self._fetch, url)
        except httpx.HTTPError as exc:
            raise GenerationFailed(f"Failed to fetch '{identifier}' from {url}: {exc}") from exc
        logger.debug("Fetched %s from %s", identifier, url)
        return text

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RemoteObjectionary":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def resolve_commit(
    tag: str,
    *,
    url_template: str = DEFAULT_COMMIT_URL,
    client: Optional[httpx.Client] = None,
    attempts: int = 3,
    timeout: float = 30.0,
) -> str:
    """Resolve a tag or branch of the objectionary to the commit it points at.

    A value that already is a commit hash is returned as is.  The endpoint
    must answer with a JSON object carrying the commit under ``sha``.
    """

    tag = (tag or "").strip()
    if not tag:
        raise ConfigError("Objectionary tag cannot be empty")
    if is_commit_hash(tag):
        return tag.lower()
    url = url_template.format(tag=tag)
    owned = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def _fetch() -> dict:
        response = http.get(url)
        response.raise_for_status()
        return response.json()

    try:
        payload = _retrying(attempts)(_fetch)
    except (httpx.HTTPError, ValueError) as exc:
        raise ConfigError(f"Failed to resolve objectionary tag '{tag}' at {url}: {exc}") from exc
    finally:
        if owned:
            http.close()
    sha = str(payload.get("sha") or "") if isinstance(payload, dict) else ""
    if not is_commit_hash(sha):
        raise ConfigError(f"Objectionary tag '{tag}' did not resolve to a commit at {url}")
    logger.info("Objectionary tag %s resolved to commit %s", tag, sha)
    return sha.lower()
