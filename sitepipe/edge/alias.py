"""Alias host redirect.

Every request to the apex alias is answered with a permanent redirect to
the same path on the canonical www host over HTTPS. The redirector holds no
pipeline state and never touches the published set.
"""

from sitepipe.edge.cache import EdgeRequest, EdgeResponse


class AliasRedirector:
    """Redirects the alias host to the canonical host.

    Args:
        canonical_host: Target hostname (www.<domain>).
        default_ttl: max-age of the redirect response.
        name: Identifier used in X-Cache headers.
    """

    def __init__(
        self, canonical_host: str, default_ttl: int = 30, name: str = "sitepipe"
    ) -> None:
        self.canonical_host = canonical_host
        self.default_ttl = default_ttl
        self.name = name

    def location(self, path: str, query: str = "") -> str:
        """Return the redirect target of a request path."""
        if not path.startswith("/"):
            path = "/" + path
        target = f"https://{self.canonical_host}{path}"
        if query:
            target += f"?{query}"
        return target

    def redirect(self, request: EdgeRequest) -> EdgeResponse:
        """Answer a request to the alias host."""
        path, _, inline_query = request.path.partition("?")
        return EdgeResponse(
            status=301,
            headers={
                "location": self.location(path, request.query or inline_query),
                "cache-control": f"max-age={self.default_ttl}",
                "content-length": "0",
                "x-cache": f"Redirect from {self.name}",
            },
        )


__all__ = ["AliasRedirector"]
