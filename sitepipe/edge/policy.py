"""Edge cache policy.

TTL resolution follows the usual CDN rules:
- no max-age/s-maxage from the origin: default_ttl
- origin directive: clamped to [min_ttl, max_ttl]
- no-store, no-cache or private: min_ttl

Cache keys contain the path only. Query strings and cookies are not
forwarded to the origin and therefore never vary the cached object.
"""

from __future__ import annotations

from dataclasses import dataclass
from posixpath import normpath
from typing import TYPE_CHECKING
from urllib.parse import unquote

from sitepipe.config import DEFAULT_MAX_TTL, ConfigurationError

if TYPE_CHECKING:
    from sitepipe.config import SiteConfig

# Bodies outside this range are sent uncompressed
MIN_COMPRESS_BYTES = 1_000
MAX_COMPRESS_BYTES = 10_000_000

COMPRESSIBLE_TYPES = frozenset(
    {
        "application/javascript",
        "application/json",
        "application/manifest+json",
        "application/rss+xml",
        "application/vnd.ms-fontobject",
        "application/x-javascript",
        "application/xhtml+xml",
        "application/xml",
        "font/otf",
        "font/ttf",
        "image/svg+xml",
        "image/vnd.microsoft.icon",
        "image/x-icon",
        "text/css",
        "text/csv",
        "text/html",
        "text/javascript",
        "text/plain",
        "text/xml",
    }
)

UNCACHEABLE_DIRECTIVES = ("no-store", "no-cache", "private")


def parse_cache_control(header: str | None) -> dict[str, str | None]:
    """Parse a Cache-Control header into lowercase directives."""
    directives: dict[str, str | None] = {}
    if not header:
        return directives
    for part in header.split(","):
        name, sep, value = part.strip().partition("=")
        if not name:
            continue
        directives[name.strip().lower()] = value.strip().strip('"') if sep else None
    return directives


def cache_key(path: str) -> str:
    """Return the cache key for a request target.

    Args:
        path: Request path, possibly with a query string.

    Returns:
        Normalized absolute path without query or fragment.
    """
    raw = unquote(path.split("?", 1)[0].split("#", 1)[0]) or "/"
    if not raw.startswith("/"):
        raw = "/" + raw
    key = normpath(raw)
    # normpath drops the trailing slash that selects the index document
    if raw.endswith("/") and key != "/":
        key += "/"
    if key.startswith("//"):
        key = "/" + key.lstrip("/")
    return key


def is_compressible(content_type: str | None, size: int) -> bool:
    """Check whether a response body qualifies for gzip."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return (
        media_type in COMPRESSIBLE_TYPES
        and MIN_COMPRESS_BYTES <= size <= MAX_COMPRESS_BYTES
    )


@dataclass(frozen=True)
class CachePolicy:
    """TTL bounds of an edge distribution.

    Attributes:
        default_ttl: TTL when the origin sends no directive (seconds).
        min_ttl: Lower bound for origin directives (seconds).
        max_ttl: Upper bound for origin directives (seconds).
        error_ttl: TTL for cached error responses (seconds).

    Raises:
        ConfigurationError: If min_ttl <= default_ttl <= max_ttl does not hold.
    """

    default_ttl: int = 30
    min_ttl: int = 5
    max_ttl: int = DEFAULT_MAX_TTL
    error_ttl: int = 10

    def __post_init__(self) -> None:
        if min(self.default_ttl, self.min_ttl, self.max_ttl, self.error_ttl) < 0:
            raise ConfigurationError("TTL values must be non-negative")
        if self.min_ttl > self.default_ttl:
            raise ConfigurationError(
                f"min_ttl ({self.min_ttl}) must be <= default_ttl ({self.default_ttl})"
            )
        if self.default_ttl > self.max_ttl:
            raise ConfigurationError(
                f"default_ttl ({self.default_ttl}) must be <= max_ttl ({self.max_ttl})"
            )

    @classmethod
    def from_site(cls, site: SiteConfig) -> CachePolicy:
        """Create the policy of a site."""
        return cls(
            default_ttl=site.default_ttl,
            min_ttl=site.min_ttl,
            max_ttl=site.max_ttl,
            error_ttl=site.error_ttl,
        )

    def effective_ttl(self, max_age: int | None, uncacheable: bool = False) -> int:
        """Resolve the TTL of an origin response.

        Args:
            max_age: Origin max-age (or s-maxage) in seconds, if any.
            uncacheable: Whether the origin sent no-store/no-cache/private.

        Returns:
            TTL in seconds.
        """
        if uncacheable:
            return self.min_ttl
        if max_age is None:
            return self.default_ttl
        return max(self.min_ttl, min(max_age, self.max_ttl))

    def ttl_for(self, cache_control: str | None) -> int:
        """Resolve the TTL from a raw Cache-Control header."""
        directives = parse_cache_control(cache_control)
        if any(d in directives for d in UNCACHEABLE_DIRECTIVES):
            return self.effective_ttl(None, uncacheable=True)
        # s-maxage applies to shared caches and wins over max-age
        for name in ("s-maxage", "max-age"):
            value = directives.get(name)
            if value is not None:
                try:
                    return self.effective_ttl(int(value))
                except ValueError:
                    continue
        return self.effective_ttl(None)


__all__ = [
    "COMPRESSIBLE_TYPES",
    "CachePolicy",
    "cache_key",
    "is_compressible",
    "parse_cache_control",
]
