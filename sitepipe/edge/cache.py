"""Edge cache node.

An EdgeNode sits between viewers and the origin and serves cached copies
for as long as the cache policy allows. Publishing never invalidates a
node: after a publish, a node keeps serving its cached copy of a path for
up to that entry's TTL, then revalidates with the origin. Nodes are
independent, so different nodes may briefly serve different versions.
"""

from __future__ import annotations

import gzip
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from sitepipe.edge.origin import Origin, OriginResponse
from sitepipe.edge.policy import CachePolicy, cache_key, is_compressible

logger = logging.getLogger(__name__)

CACHEABLE_STATUSES = frozenset({200, 301, 302, 307, 308})
CACHEABLE_ERROR_STATUSES = frozenset(
    {400, 403, 404, 405, 414, 500, 501, 502, 503, 504}
)
ALLOWED_METHODS = ("GET", "HEAD")
DEFAULT_MAX_ENTRIES = 10_000
# Seconds between sweeps of expired entries
SWEEP_INTERVAL = 60.0


@dataclass
class EdgeRequest:
    """A viewer request as seen by the edge.

    Attributes:
        method: HTTP method.
        path: Request path, possibly including a query string.
        headers: Request headers (lowercase names).
        query: Raw query string, if any.
    """

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: str = ""


@dataclass
class EdgeResponse:
    """A response returned to a viewer."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def result_type(self) -> str:
        """Cache result (Hit, RefreshHit, Miss, Error, Redirect)."""
        return self.headers.get("x-cache", "Miss").split(" ", 1)[0]


@dataclass
class CacheEntry:
    """A cached origin response."""

    response: OriginResponse
    stored_at: float
    ttl: int
    gzipped: bytes | None = None

    def age(self, now: float) -> float:
        """Seconds since the entry was stored or last revalidated."""
        return max(0.0, now - self.stored_at)

    def is_fresh(self, now: float) -> bool:
        """Whether the entry may be served without revalidation."""
        return self.age(now) < self.ttl


class EdgeNode:
    """A single caching edge location.

    Args:
        origin: Content origin.
        policy: TTL policy.
        clock: Monotonic clock in seconds (injectable for tests).
        name: Identifier used in X-Cache headers and logs.
        max_entries: Entries kept before the least recently used are evicted.
    """

    def __init__(
        self,
        origin: Origin,
        policy: CachePolicy,
        clock: Callable[[], float] = time.monotonic,
        name: str = "sitepipe",
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.origin = origin
        self.policy = policy
        self.name = name
        self._clock = clock
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._last_sweep = clock()
        self.stats = {
            "hits": 0,
            "refresh_hits": 0,
            "misses": 0,
            "errors": 0,
            "evictions": 0,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def cached_keys(self) -> list[str]:
        """Return the keys currently cached."""
        with self._lock:
            return sorted(self._entries)

    def _count(self, name: str) -> None:
        with self._lock:
            self.stats[name] += 1

    def _ttl(self, response: OriginResponse) -> int:
        if response.status in CACHEABLE_ERROR_STATUSES:
            return self.policy.error_ttl
        if response.status in CACHEABLE_STATUSES:
            return self.policy.ttl_for(response.headers.get("cache-control"))
        return 0

    def _store(self, key: str, response: OriginResponse, now: float) -> CacheEntry:
        entry = CacheEntry(response=response, stored_at=now, ttl=self._ttl(response))
        with self._lock:
            if entry.ttl > 0:
                self._put(key, entry, now)
            else:
                self._entries.pop(key, None)
        return entry

    def _put(self, key: str, entry: CacheEntry, now: float) -> None:
        """Insert an entry as most recently used. Caller holds the lock."""
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if now - self._last_sweep >= SWEEP_INTERVAL:
            self._sweep(now)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.stats["evictions"] += 1
            logger.debug("Evicted %s from %s", evicted, self.name)

    def _sweep(self, now: float) -> None:
        """Drop expired entries. Caller holds the lock."""
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        if expired:
            logger.debug("Swept %d expired entries on %s", len(expired), self.name)

    def _lookup(self, key: str) -> tuple[CacheEntry, str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)

        if entry is not None and entry.is_fresh(now):
            self._count("hits")
            return entry, "Hit"

        if entry is not None and entry.response.etag is not None:
            fresh = self.origin.fetch(key, if_none_match=entry.response.etag)
            if fresh.status == 304:
                # Origin still has the same object; restart the TTL clock
                refreshed = CacheEntry(
                    response=entry.response,
                    stored_at=now,
                    ttl=self._ttl(entry.response),
                    gzipped=entry.gzipped,
                )
                with self._lock:
                    self._put(key, refreshed, now)
                self._count("refresh_hits")
                return refreshed, "RefreshHit"
        else:
            fresh = self.origin.fetch(key)

        stored = self._store(key, fresh, now)
        if fresh.status >= 400:
            self._count("errors")
            return stored, "Error"
        self._count("misses")
        return stored, "Miss"

    def _encode(
        self, entry: CacheEntry, request: EdgeRequest
    ) -> tuple[bytes, dict[str, str]]:
        body = entry.response.body
        headers: dict[str, str] = {}
        accepts_gzip = "gzip" in request.headers.get("accept-encoding", "").lower()
        content_type = entry.response.headers.get("content-type")
        if accepts_gzip and is_compressible(content_type, len(body)):
            if entry.gzipped is None:
                entry.gzipped = gzip.compress(body, mtime=0)
            body = entry.gzipped
            headers["content-encoding"] = "gzip"
            headers["vary"] = "Accept-Encoding"
        return body, headers

    def handle(self, request: EdgeRequest) -> EdgeResponse:
        """Serve a viewer request.

        Args:
            request: Viewer request.

        Returns:
            EdgeResponse with Age, X-Cache and (where known) ETag headers.
        """
        method = request.method.upper()
        if method not in ALLOWED_METHODS:
            return EdgeResponse(
                status=405,
                headers={
                    "allow": ", ".join(ALLOWED_METHODS),
                    "x-cache": f"Error from {self.name}",
                },
            )

        key = cache_key(request.path)
        entry, result = self._lookup(key)
        now = self._clock()

        body, extra = self._encode(entry, request)
        headers = dict(entry.response.headers)
        headers.update(extra)
        headers["age"] = str(int(entry.age(now)))
        headers["x-cache"] = f"{result} from {self.name}"
        headers["content-length"] = str(len(body))

        if method == "HEAD":
            body = b""
        logger.debug("%s %s -> %d (%s)", method, key, entry.response.status, result)
        return EdgeResponse(status=entry.response.status, headers=headers, body=body)

    def invalidate(self, paths: Iterable[str] | None = None) -> int:
        """Drop cached entries.

        Args:
            paths: Paths to drop; a trailing "*" matches a prefix. None drops
                everything.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if paths is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed: set[str] = set()
                for path in paths:
                    if path.endswith("*"):
                        prefix = cache_key(path[:-1] or "/")
                        doomed.update(k for k in self._entries if k.startswith(prefix))
                    else:
                        key = cache_key(path)
                        if key in self._entries:
                            doomed.add(key)
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        logger.info("Invalidated %d cached entries on %s", removed, self.name)
        return removed


__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "SWEEP_INTERVAL",
    "CacheEntry",
    "EdgeNode",
    "EdgeRequest",
    "EdgeResponse",
]
