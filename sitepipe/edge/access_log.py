"""Edge access logging.

Writes one tab-separated line per viewer request to hourly files under
<logs_dir>/logs/cloudfront/<host>/. Cookies are never recorded.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from sitepipe.edge.bindings import log_prefix

logger = logging.getLogger(__name__)

LOG_FIELDS = (
    "date",
    "time",
    "x-edge-location",
    "sc-bytes",
    "c-ip",
    "cs-method",
    "cs(Host)",
    "cs-uri-stem",
    "sc-status",
    "cs(Referer)",
    "cs(User-Agent)",
    "cs-uri-query",
    "cs(Cookie)",
    "x-edge-result-type",
    "x-edge-request-id",
    "x-host-header",
    "cs-protocol",
    "time-taken",
)


def _field(value: str | None) -> str:
    if not value:
        return "-"
    # Tabs and newlines would break the line format
    return quote(value, safe="/:;,.=&?-_~()@+*!$'")


@dataclass
class AccessLogEntry:
    """One viewer request."""

    host: str
    method: str
    path: str
    status: int
    bytes_sent: int
    result_type: str
    client_ip: str | None = None
    query: str = ""
    referer: str | None = None
    user_agent: str | None = None
    protocol: str = "https"
    time_taken: float = 0.0


class AccessLogger:
    """Appends access log lines for one host.

    Args:
        logs_dir: Root of the log sink.
        host: Hostname whose requests are logged.
        location: Edge location name.
        clock: Wall clock in epoch seconds (injectable for tests).
    """

    def __init__(
        self,
        logs_dir: Path,
        host: str,
        location: str = "local",
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.directory = logs_dir / log_prefix(host)
        self.host = host
        self.location = location
        self._clock = clock
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        if self._clock is None:
            return datetime.now(timezone.utc)
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def path_for(self, when: datetime) -> Path:
        """Return the log file receiving lines written at a time."""
        return self.directory / f"{self.host}.{when:%Y-%m-%d-%H}.log"

    def format(self, entry: AccessLogEntry, when: datetime) -> str:
        """Render one log line (without newline)."""
        values = [
            when.strftime("%Y-%m-%d"),
            when.strftime("%H:%M:%S"),
            self.location,
            str(entry.bytes_sent),
            entry.client_ip or "-",
            entry.method,
            self.host,
            _field(entry.path),
            str(entry.status),
            _field(entry.referer),
            _field(entry.user_agent),
            _field(entry.query),
            "-",
            entry.result_type,
            uuid.uuid4().hex,
            entry.host,
            entry.protocol,
            f"{entry.time_taken:.3f}",
        ]
        return "\t".join(values)

    def write(self, entry: AccessLogEntry) -> Path:
        """Append an entry to the current log file.

        Returns:
            Path of the file written.
        """
        when = self._now()
        path = self.path_for(when)
        line = self.format(entry, when)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not path.exists()
            with path.open("a", encoding="utf-8") as f:
                if new_file:
                    f.write("#Version: 1.0\n")
                    f.write("#Fields: " + " ".join(LOG_FIELDS) + "\n")
                f.write(line + "\n")
        return path


__all__ = ["LOG_FIELDS", "AccessLogEntry", "AccessLogger"]
