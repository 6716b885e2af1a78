"""Configuration settings for sitepipe.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Two layers are defined here:
- Settings: operational knobs (paths, timeouts, retries), all defaulted.
- SiteConfig: the validated site surface (domain, certificate, TTLs).
  An invalid SiteConfig raises ConfigurationError and the pipeline never
  starts.
"""

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from sitepipe.regions import REGION_MAP

# Lowercase letters, digits and dash, with at least one alphabetic TLD label
DOMAIN_NAME_PATTERN = re.compile(r"[a-z0-9]+[-.a-z0-9]*(\.[a-z][a-z]+)+")
DOMAIN_NAME_MIN_LENGTH = 4
DOMAIN_NAME_MAX_LENGTH = 253

CERTIFICATE_ARN_PATTERN = re.compile(
    r"^arn:aws[a-z-]*:acm:(?P<region>[a-z0-9-]+):\d{12}:certificate/[A-Za-z0-9-]+$"
)
# The edge only accepts certificates issued in this region
CERTIFICATE_REGION = "us-east-1"

DEFAULT_MAX_TTL = 31536000


class ConfigurationError(Exception):
    """Raised when the site configuration is invalid."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message)
        self.code = code


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "sitepipe"


def _default_workspace_dir() -> Path:
    """Return the default build workspace directory."""
    return Path.home() / ".cache" / "sitepipe" / "workspaces"


def _default_artifacts_dir() -> Path:
    """Return the default artifact store directory."""
    return _default_data_dir() / "artifacts"


def _default_publish_dir() -> Path:
    """Return the default publish target (origin) directory."""
    return _default_data_dir() / "site"


def _default_logs_dir() -> Path:
    """Return the default directory for build and access logs."""
    return _default_data_dir() / "logs"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the SITEPIPE_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="SITEPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Site surface (validated into SiteConfig)
    domain_name: str | None = Field(
        default=None, description="Apex domain, without www"
    )
    certificate_arn: str | None = Field(
        default=None, description="ARN of the TLS certificate for the edge"
    )
    certificate_domains: list[str] | None = Field(
        default=None, description="Names the certificate is valid for"
    )
    default_ttl: int = Field(default=30, ge=0, description="Default TTL (seconds)")
    min_ttl: int = Field(default=5, ge=0, description="Minimum TTL (seconds)")
    max_ttl: int = Field(
        default=DEFAULT_MAX_TTL, ge=0, description="Maximum TTL (seconds)"
    )
    error_ttl: int = Field(
        default=10, ge=0, description="TTL for cached error responses (seconds)"
    )
    edge_max_entries: int = Field(
        default=10_000, ge=1, description="Responses an edge node keeps cached"
    )
    tracked_branch: str = Field(default="master", description="Branch to deploy")
    region: str = Field(default="us-east-1", description="Origin region")
    index_document: str = Field(default="index.html")
    error_document: str = Field(default="404.html")
    site_file: Path | None = Field(
        default=None, description="Optional YAML site file overriding env values"
    )

    # Source
    repository_url: str | None = Field(
        default=None, description="Git URL cloned for each build"
    )
    branch_api_url: str | None = Field(
        default=None,
        description="REST endpoint returning the tracked branch head "
        "(e.g. https://api.github.com/repos/OWNER/REPO/branches/master)",
    )
    webhook_token: str | None = Field(
        default=None,
        description="Shared token required in the X-Sitepipe-Token webhook header",
    )
    poll_interval: int = Field(default=60, ge=1, description="Poll interval (s)")
    dedup_window: int = Field(
        default=1024, ge=1, description="Revision ids remembered for de-duplication"
    )

    # Paths
    workspace_dir: Path = Field(
        default_factory=_default_workspace_dir,
        description="Root directory for per-run build working trees",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory of the artifact store",
    )
    publish_dir: Path = Field(
        default_factory=_default_publish_dir,
        description="Origin directory holding the published site",
    )
    logs_dir: Path = Field(
        default_factory=_default_logs_dir,
        description="Root directory for build and access logs",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Build
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Hard wall-clock timeout for a build",
    )
    compute_type: Literal["small", "medium", "large"] = Field(
        default="small",
        description="Declared build compute profile",
    )
    cancel_stale_builds: bool = Field(
        default=False,
        description="Abort an in-flight build when a newer revision is queued",
    )

    # Publish
    publish_op_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single publish file operation",
    )
    publish_max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Attempts per publish file operation",
    )
    publish_backoff: float = Field(
        default=0.5,
        ge=0,
        description="Base delay for exponential backoff between attempts",
    )
    publish_max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Concurrent publish uploads",
    )


class SiteConfig(BaseModel):
    """Validated site configuration.

    Field aliases accept the camelCase names of the original template
    parameters (domainName, certificateArn, defaultTTL, minTTL).

    Attributes:
        domain_name: Apex domain; the canonical host is www.<domain_name>.
        certificate_arn: Certificate presented by both edge hosts.
        certificate_domains: Optional names covered by the certificate.
        default_ttl: TTL used when the origin sends no directive.
        min_ttl: Floor applied to origin directives.
        max_ttl: Ceiling applied to origin directives.
        error_ttl: TTL for cached error responses.
        tracked_branch: Branch whose changes trigger deployments.
        region: Origin region (see sitepipe.regions).
        index_document: Document served for directory paths.
        error_document: Document served for missing paths.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    domain_name: str = Field(alias="domainName")
    certificate_arn: str = Field(alias="certificateArn", min_length=1)
    certificate_domains: list[str] | None = Field(
        default=None, alias="certificateDomains"
    )
    default_ttl: int = Field(default=30, ge=0, alias="defaultTTL")
    min_ttl: int = Field(default=5, ge=0, alias="minTTL")
    max_ttl: int = Field(default=DEFAULT_MAX_TTL, ge=0, alias="maxTTL")
    error_ttl: int = Field(default=10, ge=0, alias="errorTTL")
    tracked_branch: str = Field(default="master", min_length=1, alias="trackedBranch")
    region: str = "us-east-1"
    index_document: str = Field(default="index.html", alias="indexDocument")
    error_document: str = Field(default="404.html", alias="errorDocument")

    @field_validator("domain_name")
    @classmethod
    def validate_domain_name(cls, v: str) -> str:
        """Validate the domain against the allowed pattern and length."""
        if not DOMAIN_NAME_MIN_LENGTH <= len(v) <= DOMAIN_NAME_MAX_LENGTH:
            raise ValueError(
                f"domain_name must be {DOMAIN_NAME_MIN_LENGTH}-"
                f"{DOMAIN_NAME_MAX_LENGTH} characters, got {len(v)}"
            )
        if not DOMAIN_NAME_PATTERN.fullmatch(v):
            raise ValueError(
                "domain_name must use only lowercase letters, numbers, dash (-) "
                f"and dots, and end with a valid TLD, got '{v}'"
            )
        return v

    @field_validator("certificate_arn")
    @classmethod
    def validate_certificate_arn(cls, v: str) -> str:
        """Validate the certificate ARN format and region."""
        match = CERTIFICATE_ARN_PATTERN.match(v)
        if match is None:
            raise ValueError(f"certificate_arn is not a certificate ARN: '{v}'")
        if match.group("region") != CERTIFICATE_REGION:
            raise ValueError(
                f"certificate must be issued in {CERTIFICATE_REGION}, "
                f"got {match.group('region')}"
            )
        return v

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate the region has a known website endpoint."""
        if v not in REGION_MAP:
            raise ValueError(f"region must be one of {sorted(REGION_MAP)}, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_ttls_and_certificate(self) -> "SiteConfig":
        """Check TTL ordering and certificate coverage."""
        if self.min_ttl > self.default_ttl:
            raise ValueError(
                f"min_ttl ({self.min_ttl}) must be <= default_ttl ({self.default_ttl})"
            )
        if self.default_ttl > self.max_ttl:
            raise ValueError(
                f"default_ttl ({self.default_ttl}) must be <= max_ttl ({self.max_ttl})"
            )
        if self.certificate_domains is not None:
            for host in (self.canonical_host, self.alias_host):
                if not certificate_covers(host, self.certificate_domains):
                    raise ValueError(f"certificate is not valid for {host}")
        return self

    @property
    def canonical_host(self) -> str:
        """Hostname that serves content."""
        return f"www.{self.domain_name}"

    @property
    def alias_host(self) -> str:
        """Hostname that redirects to the canonical host."""
        return self.domain_name


def certificate_covers(hostname: str, names: list[str]) -> bool:
    """Check whether any certificate name matches a hostname.

    Wildcards cover exactly one leftmost label.

    Args:
        hostname: Hostname to check.
        names: Subject/alternative names of the certificate.

    Returns:
        True if the hostname is covered.
    """
    hostname = hostname.lower()
    for name in names:
        name = name.lower()
        if name == hostname:
            return True
        if name.startswith("*."):
            head, _, tail = hostname.partition(".")
            if head and tail == name[2:]:
                return True
    return False


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "site"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def load_site_config(
    settings: Settings | None = None,
    site_file: Path | None = None,
) -> SiteConfig:
    """Load and validate the site configuration.

    A YAML site file (argument or settings.site_file) takes precedence;
    otherwise the site fields of Settings are used.

    Args:
        settings: Application settings.
        site_file: Optional YAML site file.

    Returns:
        Validated SiteConfig.

    Raises:
        ConfigurationError: If the configuration is missing or invalid.
    """
    if settings is None:
        settings = get_settings()
    site_file = site_file or settings.site_file

    data: dict[str, Any]
    if site_file is not None:
        try:
            with open(site_file, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read site file {site_file}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Expected a YAML mapping in {site_file}, got {type(loaded).__name__}"
            )
        data = loaded
    else:
        data = {
            "domain_name": settings.domain_name,
            "certificate_arn": settings.certificate_arn,
            "certificate_domains": settings.certificate_domains,
            "default_ttl": settings.default_ttl,
            "min_ttl": settings.min_ttl,
            "max_ttl": settings.max_ttl,
            "error_ttl": settings.error_ttl,
            "tracked_branch": settings.tracked_branch,
            "region": settings.region,
            "index_document": settings.index_document,
            "error_document": settings.error_document,
        }
        if data["domain_name"] is None:
            raise ConfigurationError("domain_name is required")
        if not data["certificate_arn"]:
            raise ConfigurationError("certificate_arn is required")

    try:
        return SiteConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e


# Never rendered by print_settings_json
SECRET_SETTINGS = {"webhook_token"}

def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings, without secrets.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2, exclude=SECRET_SETTINGS)


__all__ = [
    "SECRET_SETTINGS",
    "ConfigurationError",
    "Settings",
    "SiteConfig",
    "certificate_covers",
    "get_settings",
    "load_site_config",
    "print_settings_json",
]
