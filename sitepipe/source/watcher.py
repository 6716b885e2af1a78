"""Source watcher.

Receives repository change events, drops the ones that do not qualify,
de-duplicates by revision id, and forwards each new revision exactly once
to the orchestrator's trigger entry point.

Upstream delivery is at-least-once and best-effort: there is no durable
event log, so an event delivered while the watcher is down is lost unless
the upstream replays it (the branch poller covers that gap by reading the
branch head directly).
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from sitepipe.source.events import InvalidTriggerError, parse_event
from sitepipe.types import SourceRevision

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW = 1024


class SourceWatcher:
    """De-duplicating event gate in front of the orchestrator.

    Args:
        tracked_branch: Branch whose changes are deployed.
        on_revision: Callback invoked once per new revision.
        window: Number of recent revision ids remembered.
    """

    def __init__(
        self,
        tracked_branch: str,
        on_revision: Callable[[SourceRevision], object],
        window: int = DEFAULT_DEDUP_WINDOW,
    ) -> None:
        self.tracked_branch = tracked_branch
        self._on_revision = on_revision
        self._window = window
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def has_seen(self, revision_id: str) -> bool:
        """Check whether a revision id was already forwarded."""
        with self._lock:
            return revision_id in self._seen

    def mark_seen(self, revision_ids: Iterable[str]) -> None:
        """Remember revisions that were handled before this watcher started."""
        with self._lock:
            for revision_id in revision_ids:
                self._seen[revision_id] = None
                self._seen.move_to_end(revision_id)
            while len(self._seen) > self._window:
                self._seen.popitem(last=False)

    def receive(self, event: Mapping[str, Any]) -> SourceRevision | None:
        """Handle a raw repository event.

        Args:
            event: Raw event mapping.

        Returns:
            The forwarded SourceRevision, or None if the event was dropped
            as invalid or duplicate.
        """
        try:
            revision = parse_event(event, self.tracked_branch)
        except InvalidTriggerError as e:
            logger.warning("Dropping event: %s", e)
            return None

        with self._lock:
            if revision.revision_id in self._seen:
                self._seen.move_to_end(revision.revision_id)
                logger.info("Ignoring duplicate revision %s", revision.revision_id)
                return None
            self._seen[revision.revision_id] = None
            while len(self._seen) > self._window:
                self._seen.popitem(last=False)

        try:
            self._on_revision(revision)
        except Exception:
            # Not forwarded, so a redelivery must be allowed through
            with self._lock:
                self._seen.pop(revision.revision_id, None)
            raise

        logger.info(
            "Forwarded revision %s on %s", revision.revision_id, revision.branch
        )
        return revision


__all__ = ["DEFAULT_DEDUP_WINDOW", "SourceWatcher"]
