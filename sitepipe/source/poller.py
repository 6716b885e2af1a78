"""Branch head poller.

This module handles:
- Reading the head commit of the tracked branch from a Git hosting REST API
- Synthesizing change events when the head moves
- Feeding those events to the source watcher

The endpoint is expected to answer like the GitHub/Gitea branch API::

    GET /repos/{owner}/{repo}/branches/{branch}
    {"name": "master", "commit": {"sha": "abc123", ...}}
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import httpx

from sitepipe.types import EventKind

logger = logging.getLogger(__name__)

# Timeout for branch requests (seconds)
REQUEST_TIMEOUT = 30


class PollError(Exception):
    """Raised when the branch head cannot be read."""

    def __init__(self, message: str, code: str = "poll_error") -> None:
        """Initialize PollError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


def extract_head(payload: Any) -> str:
    """Extract the head commit id from a branch API payload.

    Args:
        payload: Decoded JSON body.

    Returns:
        Commit id of the branch head.

    Raises:
        PollError: If the payload has no commit id.
    """
    commit = payload.get("commit") if isinstance(payload, Mapping) else None
    if isinstance(commit, Mapping):
        for key in ("sha", "id"):
            value = commit.get(key)
            if isinstance(value, str) and value:
                return value
    raise PollError("Branch payload has no commit id", code="invalid_response")


class BranchPoller:
    """Polls a branch endpoint and emits events when its head moves.

    Args:
        client: HTTPX client instance.
        url: Branch endpoint URL.
        branch: Tracked branch name.
        on_event: Callback receiving synthesized flat events.
        headers: Extra request headers (e.g. authorization).
    """

    def __init__(
        self,
        client: httpx.Client,
        url: str,
        branch: str,
        on_event: Callable[[dict[str, Any]], object],
        headers: dict[str, str] | None = None,
    ) -> None:
        self.client = client
        self.url = url
        self.branch = branch
        self._on_event = on_event
        self._headers = headers or {}
        self.last_head: str | None = None

    def fetch_head(self, timeout: float = REQUEST_TIMEOUT) -> str:
        """Fetch the current head of the branch.

        Raises:
            PollError: If the request fails or the payload is invalid.
        """
        logger.debug("Polling branch head from %s", self.url)
        try:
            response = self.client.get(self.url, headers=self._headers, timeout=timeout)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise PollError(
                f"HTTP error polling {self.url}: {e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise PollError(f"Timeout polling {self.url}", code="timeout") from e
        except httpx.RequestError as e:
            raise PollError(
                f"Network error polling {self.url}: {e}", code="network_error"
            ) from e
        except ValueError as e:
            raise PollError(
                f"Invalid JSON from {self.url}", code="invalid_response"
            ) from e
        return extract_head(payload)

    def poll_once(self) -> dict[str, Any] | None:
        """Poll once and emit an event if the head changed.

        Returns:
            The emitted event, or None if the head is unchanged.

        Raises:
            PollError: If the head cannot be read.
        """
        head = self.fetch_head()
        if head == self.last_head:
            return None

        kind = EventKind.CREATED if self.last_head is None else EventKind.UPDATED
        event = {
            "revisionId": head,
            "branch": self.branch,
            "eventKind": kind.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.last_head = head
        logger.info("Branch %s head is now %s", self.branch, head)
        self._on_event(event)
        return event

    def run(self, interval: float, stop: threading.Event) -> None:
        """Poll until stop is set, logging and skipping failed polls.

        Args:
            interval: Seconds between polls.
            stop: Event that ends the loop.
        """
        while not stop.is_set():
            try:
                self.poll_once()
            except PollError as e:
                logger.warning("Poll failed (%s): %s", e.code, e)
            stop.wait(interval)


__all__ = ["REQUEST_TIMEOUT", "BranchPoller", "PollError", "extract_head"]
