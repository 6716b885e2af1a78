"""Domain bindings and derived edge/DNS descriptions.

A site is reachable under two names derived from its domain:
- canonical: www.<domain>, serves content, redirect-to-https
- alias: <domain>, redirects to the canonical host, allow-all

Both names present the same certificate. Each name gets an edge
distribution and an A alias record pointing at that distribution.
"""

from __future__ import annotations

from dataclasses import dataclass

from sitepipe.config import SiteConfig
from sitepipe.regions import website_origin
from sitepipe.types import ViewerProtocolPolicy

# Hosted zone shared by every edge distribution endpoint
EDGE_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"


@dataclass(frozen=True)
class DomainBinding:
    """Canonical/alias host pair of a site."""

    canonical_host: str
    alias_host: str
    certificate_arn: str

    @classmethod
    def from_site(cls, site: SiteConfig) -> DomainBinding:
        """Derive the binding of a site."""
        return cls(
            canonical_host=site.canonical_host,
            alias_host=site.alias_host,
            certificate_arn=site.certificate_arn,
        )

    @property
    def hosts(self) -> tuple[str, str]:
        """Both hostnames, canonical first."""
        return (self.canonical_host, self.alias_host)


@dataclass(frozen=True)
class EdgeConfig:
    """Description of one edge distribution.

    Attributes:
        default_ttl: TTL when the origin sends no directive.
        min_ttl: Lower TTL bound.
        max_ttl: Upper TTL bound.
        origin_id: Website endpoint of the origin bucket.
        aliases: Hostnames served by the distribution.
        viewer_protocol_policy: Handling of plain HTTP viewers.
        certificate_arn: Certificate presented to viewers.
        compress: Whether gzip compression is enabled.
        forward_query_string: Whether the query reaches the origin.
        forward_cookies: Whether cookies reach the origin.
        log_prefix: Access log prefix.
    """

    default_ttl: int
    min_ttl: int
    max_ttl: int
    origin_id: str
    aliases: tuple[str, ...]
    viewer_protocol_policy: ViewerProtocolPolicy
    certificate_arn: str
    compress: bool = True
    forward_query_string: bool = False
    forward_cookies: bool = False
    log_prefix: str = ""


@dataclass(frozen=True)
class AliasRecord:
    """DNS alias record pointing a hostname at an edge distribution."""

    name: str
    hosted_zone_id: str
    dns_name: str
    type: str = "A"


def log_prefix(host: str) -> str:
    """Return the access log prefix of a host."""
    return f"logs/cloudfront/{host}/"


def edge_configs(site: SiteConfig) -> list[EdgeConfig]:
    """Describe the canonical and alias distributions of a site.

    The canonical distribution fronts the content bucket named after the
    canonical host; the alias distribution fronts the redirect bucket named
    after the apex.

    Args:
        site: Validated site configuration.

    Returns:
        [canonical, alias] edge configurations.
    """
    binding = DomainBinding.from_site(site)
    common = {
        "default_ttl": site.default_ttl,
        "min_ttl": site.min_ttl,
        "max_ttl": site.max_ttl,
        "certificate_arn": binding.certificate_arn,
    }
    return [
        EdgeConfig(
            origin_id=website_origin(binding.canonical_host, site.region),
            aliases=(binding.canonical_host,),
            viewer_protocol_policy=ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
            log_prefix=log_prefix(binding.canonical_host),
            **common,
        ),
        EdgeConfig(
            origin_id=website_origin(binding.alias_host, site.region),
            aliases=(binding.alias_host,),
            viewer_protocol_policy=ViewerProtocolPolicy.ALLOW_ALL,
            log_prefix=log_prefix(binding.alias_host),
            **common,
        ),
    ]


def dns_records(
    binding: DomainBinding, canonical_endpoint: str, alias_endpoint: str
) -> list[AliasRecord]:
    """Describe the A alias records of a binding.

    Args:
        binding: Domain binding.
        canonical_endpoint: Edge endpoint serving the canonical host.
        alias_endpoint: Edge endpoint serving the alias host.

    Returns:
        [canonical, alias] records, both in the edge hosted zone.
    """
    return [
        AliasRecord(
            name=binding.canonical_host,
            hosted_zone_id=EDGE_HOSTED_ZONE_ID,
            dns_name=canonical_endpoint,
        ),
        AliasRecord(
            name=binding.alias_host,
            hosted_zone_id=EDGE_HOSTED_ZONE_ID,
            dns_name=alias_endpoint,
        ),
    ]


__all__ = [
    "EDGE_HOSTED_ZONE_ID",
    "AliasRecord",
    "DomainBinding",
    "EdgeConfig",
    "dns_records",
    "edge_configs",
    "log_prefix",
]
