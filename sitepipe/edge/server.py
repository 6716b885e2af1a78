"""Edge ASGI application.

Routes viewer requests by Host header:
- alias host: permanent redirect to the canonical host (allow-all)
- canonical host: plain HTTP is redirected to HTTPS, then served by the
  edge node
- any other host: 403
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from fastapi import FastAPI, Request, Response

from sitepipe import __version__
from sitepipe.config import SiteConfig
from sitepipe.edge.access_log import AccessLogEntry, AccessLogger
from sitepipe.edge.alias import AliasRedirector
from sitepipe.edge.bindings import DomainBinding
from sitepipe.edge.cache import (
    DEFAULT_MAX_ENTRIES,
    EdgeNode,
    EdgeRequest,
    EdgeResponse,
)
from sitepipe.edge.origin import Origin
from sitepipe.edge.policy import CachePolicy

logger = logging.getLogger(__name__)

EDGE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def request_host(request: Request) -> str:
    """Return the lowercase Host of a request without port."""
    host = request.headers.get("host", "")
    return host.rsplit(":", 1)[0].lower() if host else ""


def request_scheme(request: Request) -> str:
    """Return the viewer protocol, honouring X-Forwarded-Proto."""
    forwarded = request.headers.get("x-forwarded-proto")
    if forwarded:
        return forwarded.split(",", 1)[0].strip().lower()
    return request.url.scheme


def create_edge_app(
    site: SiteConfig,
    origin: Origin,
    policy: CachePolicy | None = None,
    logs_dir: Path | None = None,
    clock: Callable[[], float] = time.monotonic,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> FastAPI:
    """Create the edge application of a site.

    Args:
        site: Validated site configuration.
        origin: Origin serving the published set.
        policy: Cache policy; derived from the site when omitted.
        logs_dir: Root of the access log sink; logging is off when omitted.
        clock: Monotonic clock of the edge node.
        max_entries: Cache entries kept before LRU eviction.

    Returns:
        FastAPI application; the node is available as app.state.edge_node.
    """
    binding = DomainBinding.from_site(site)
    node = EdgeNode(
        origin,
        policy or CachePolicy.from_site(site),
        clock=clock,
        max_entries=max_entries,
    )
    redirector = AliasRedirector(binding.canonical_host, site.default_ttl)
    access_loggers = (
        {host: AccessLogger(logs_dir, host) for host in binding.hosts}
        if logs_dir is not None
        else {}
    )

    application = FastAPI(
        title="sitepipe edge",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    application.state.edge_node = node
    application.state.binding = binding

    def dispatch(request: Request, host: str, scheme: str) -> EdgeResponse:
        edge_request = EdgeRequest(
            method=request.method,
            path=request.url.path,
            headers={k.lower(): v for k, v in request.headers.items()},
            query=request.url.query,
        )
        if host == binding.alias_host:
            return redirector.redirect(edge_request)
        if host == binding.canonical_host:
            if scheme != "https":
                return redirector.redirect(edge_request)
            return node.handle(edge_request)
        logger.warning("Rejected request for unknown host %r", host)
        return EdgeResponse(
            status=403,
            headers={"content-length": "0", "x-cache": f"Error from {node.name}"},
        )

    @application.api_route(
        "/{path:path}", methods=EDGE_METHODS, include_in_schema=False
    )
    def serve(request: Request, path: str) -> Response:
        """Serve any viewer request."""
        started = time.perf_counter()
        host = request_host(request)
        scheme = request_scheme(request)
        edge_response = dispatch(request, host, scheme)

        access_logger = access_loggers.get(host)
        if access_logger is not None:
            access_logger.write(
                AccessLogEntry(
                    host=host,
                    method=request.method,
                    path=request.url.path,
                    status=edge_response.status,
                    bytes_sent=len(edge_response.body),
                    result_type=edge_response.result_type,
                    client_ip=request.client.host if request.client else None,
                    query=request.url.query,
                    referer=request.headers.get("referer"),
                    user_agent=request.headers.get("user-agent"),
                    protocol=scheme,
                    time_taken=time.perf_counter() - started,
                )
            )

        return Response(
            content=edge_response.body,
            status_code=edge_response.status,
            headers=edge_response.headers,
        )

    return application


__all__ = ["create_edge_app", "request_host", "request_scheme"]
