"""Tests for edge cache policy."""

import pytest

from sitepipe.config import DEFAULT_MAX_TTL, ConfigurationError, SiteConfig
from sitepipe.edge.policy import (
    CachePolicy,
    cache_key,
    is_compressible,
    parse_cache_control,
)


class TestParseCacheControl:
    """Test parse_cache_control function."""

    def test_directives(self) -> None:
        """Directives are lowercased; values are unquoted."""
        assert parse_cache_control('Public, Max-Age=60, s-maxage="120"') == {
            "public": None,
            "max-age": "60",
            "s-maxage": "120",
        }

    def test_empty(self) -> None:
        """Missing headers parse to no directives."""
        assert parse_cache_control(None) == {}
        assert parse_cache_control(" , ") == {}


class TestCacheKey:
    """Test cache_key function."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/index.html", "/index.html"),
            ("/index.html?utm_source=x", "/index.html"),
            ("/blog/", "/blog/"),
            ("/blog/./post/../", "/blog/"),
            ("/a//b.html", "/a/b.html"),
            ("//double", "/double"),
            ("", "/"),
            ("/caf%C3%A9.html", "/café.html"),
            ("/../../etc/passwd", "/etc/passwd"),
        ],
    )
    def test_normalization(self, path: str, expected: str) -> None:
        """Paths are decoded and normalized; queries never vary the key."""
        assert cache_key(path) == expected


class TestIsCompressible:
    """Test is_compressible function."""

    def test_text_in_range(self) -> None:
        """Text between 1,000 and 10,000,000 bytes is compressible."""
        assert is_compressible("text/html; charset=utf-8", 5000)
        assert is_compressible("application/javascript", 1000)

    def test_too_small_or_large(self) -> None:
        """Bodies outside the size window are not compressed."""
        assert not is_compressible("text/html", 999)
        assert not is_compressible("text/html", 10_000_001)

    def test_binary(self) -> None:
        """Already-compressed types are not compressed."""
        assert not is_compressible("image/png", 5000)
        assert not is_compressible(None, 5000)


class TestCachePolicy:
    """Test CachePolicy class."""

    def test_defaults(self) -> None:
        """Defaults match the site defaults."""
        policy = CachePolicy()
        assert (policy.default_ttl, policy.min_ttl, policy.max_ttl) == (
            30,
            5,
            DEFAULT_MAX_TTL,
        )

    def test_invalid_ordering(self) -> None:
        """min_ttl > default_ttl is a configuration error."""
        with pytest.raises(ConfigurationError):
            CachePolicy(default_ttl=30, min_ttl=60)
        with pytest.raises(ConfigurationError):
            CachePolicy(default_ttl=100, max_ttl=50)
        with pytest.raises(ConfigurationError):
            CachePolicy(error_ttl=-1)

    def test_no_directive_uses_default(self) -> None:
        """Responses without directives live for default_ttl."""
        assert CachePolicy().ttl_for(None) == 30
        assert CachePolicy().ttl_for("public") == 30

    def test_directive_clamped(self) -> None:
        """Origin directives are clamped to [min_ttl, max_ttl]."""
        policy = CachePolicy(default_ttl=30, min_ttl=5, max_ttl=3600)
        assert policy.ttl_for("max-age=1") == 5
        assert policy.ttl_for("max-age=600") == 600
        assert policy.ttl_for("max-age=86400") == 3600

    def test_effective_ttl(self) -> None:
        """effective_ttl works on an already parsed max-age."""
        policy = CachePolicy(default_ttl=30, min_ttl=5, max_ttl=3600)
        assert policy.effective_ttl(None) == 30
        assert policy.effective_ttl(0) == 5
        assert policy.effective_ttl(7200) == 3600
        assert policy.effective_ttl(600, uncacheable=True) == 5

    def test_s_maxage_wins(self) -> None:
        """s-maxage takes precedence over max-age."""
        assert CachePolicy().ttl_for("max-age=600, s-maxage=120") == 120

    @pytest.mark.parametrize("header", ["no-store", "no-cache", "private, max-age=60"])
    def test_uncacheable(self, header: str) -> None:
        """Uncacheable responses are held for min_ttl only."""
        assert CachePolicy(min_ttl=5).ttl_for(header) == 5

    def test_malformed_max_age(self) -> None:
        """Unparseable values fall back to the default."""
        assert CachePolicy().ttl_for("max-age=soon") == 30

    def test_from_site(self) -> None:
        """The policy mirrors the site TTLs."""
        site = SiteConfig(
            domain_name="example.com",
            certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/a-1",
            default_ttl=60,
            min_ttl=10,
            error_ttl=20,
        )
        policy = CachePolicy.from_site(site)
        assert policy.default_ttl == 60
        assert policy.min_ttl == 10
        assert policy.error_ttl == 20
