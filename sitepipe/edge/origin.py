"""Website origin over the published set.

Serves files from a publish target with static website semantics:
- a path ending in "/" serves the index document of that directory
- a path naming a directory that has an index document redirects to "path/"
- a missing path returns 404 with the error document as body
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Protocol

from sitepipe.publish.target import PublishTarget

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class OriginResponse:
    """Response produced by an origin.

    Attributes:
        status: HTTP status code.
        body: Response body.
        headers: Response headers (lowercase names).
    """

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def etag(self) -> str | None:
        """Entity tag of the body, if any."""
        return self.headers.get("etag")


class Origin(Protocol):
    """Interface of the content origin behind an edge node."""

    def fetch(self, path: str, if_none_match: str | None = None) -> OriginResponse:
        """Fetch a path, answering 304 when the entity tag still matches."""
        ...


def compute_etag(data: bytes) -> str:
    """Return a strong entity tag for a body."""
    return '"' + hashlib.sha256(data).hexdigest()[:32] + '"'


def guess_content_type(path: str) -> str:
    """Guess the Content-Type of a key from its extension."""
    content_type, _ = mimetypes.guess_type(path)
    if content_type is None:
        return DEFAULT_CONTENT_TYPE
    if content_type.startswith("text/") or content_type in (
        "application/javascript",
        "application/json",
    ):
        return f"{content_type}; charset=utf-8"
    return content_type


class PublishedSetOrigin:
    """Static website origin reading from a publish target.

    Args:
        target: Publish target holding the live files.
        index_document: Document served for directory paths.
        error_document: Document served as the body of 404 responses.
    """

    def __init__(
        self,
        target: PublishTarget,
        index_document: str = "index.html",
        error_document: str = "404.html",
    ) -> None:
        self.target = target
        self.index_document = index_document
        self.error_document = error_document

    def _resolve(self, path: str) -> str:
        key = path.lstrip("/")
        if not key or key.endswith("/"):
            key += self.index_document
        return key

    def _ok(
        self, key: str, data: bytes, if_none_match: str | None
    ) -> OriginResponse:
        etag = compute_etag(data)
        headers = {"content-type": guess_content_type(key), "etag": etag}
        if if_none_match is not None and if_none_match == etag:
            return OriginResponse(status=304, headers=headers)
        return OriginResponse(status=200, body=data, headers=headers)

    def fetch(self, path: str, if_none_match: str | None = None) -> OriginResponse:
        """Fetch a path from the published set.

        Args:
            path: Normalized absolute request path.
            if_none_match: Entity tag from a cached copy.

        Returns:
            OriginResponse with status 200, 301, 304 or 404.
        """
        key = self._resolve(path)
        data = self.target.read_file(key)
        if data is not None:
            return self._ok(key, data, if_none_match)

        if not path.endswith("/"):
            index_key = f"{key}/{self.index_document}"
            if self.target.read_file(index_key) is not None:
                return OriginResponse(status=301, headers={"location": f"{path}/"})

        logger.debug("Origin miss for %s", key)
        body = self.target.read_file(self.error_document)
        if body is None:
            return OriginResponse(
                status=404,
                body=b"404 Not Found\n",
                headers={"content-type": "text/plain; charset=utf-8"},
            )
        return OriginResponse(
            status=404,
            body=body,
            headers={
                "content-type": guess_content_type(self.error_document),
                "etag": compute_etag(body),
            },
        )


__all__ = [
    "Origin",
    "OriginResponse",
    "PublishedSetOrigin",
    "compute_etag",
    "guess_content_type",
]
