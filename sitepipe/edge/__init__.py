"""Edge serving: cache policy, edge nodes, alias redirects and bindings."""

from sitepipe.edge.alias import AliasRedirector
from sitepipe.edge.bindings import AliasRecord, DomainBinding, EdgeConfig
from sitepipe.edge.cache import EdgeNode, EdgeRequest, EdgeResponse
from sitepipe.edge.origin import PublishedSetOrigin
from sitepipe.edge.policy import CachePolicy, cache_key

__all__ = [
    "AliasRecord",
    "AliasRedirector",
    "CachePolicy",
    "DomainBinding",
    "EdgeConfig",
    "EdgeNode",
    "EdgeRequest",
    "EdgeResponse",
    "PublishedSetOrigin",
    "cache_key",
]
