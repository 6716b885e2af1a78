"""Build specification schema.

A build specification lists shell commands per phase and where the site
output lands. It is read from buildspec.yml at the root of the source tree;
when absent, DEFAULT_BUILDSPEC (a Node static site generator build into
public/) applies.

Example::

    version: 0.2
    env:
      variables:
        NODE_ENV: production
    phases:
      install:
        commands:
          - npm install
      build:
        commands:
          - npm run build
    artifacts:
      base-directory: public
      files:
        - "**/*"
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

BUILDSPEC_FILENAME = "buildspec.yml"

# Phases run in this order; a missing phase is skipped
PHASE_ORDER = ("install", "pre_build", "build", "post_build")


class BuildSpecError(Exception):
    """Raised when a build specification is unreadable or invalid."""

    def __init__(self, message: str, code: str = "invalid_buildspec") -> None:
        super().__init__(message)
        self.code = code


class PhaseSchema(BaseModel):
    """Commands of a single phase."""

    model_config = ConfigDict(extra="forbid")

    commands: list[str] = Field(default_factory=list)


class EnvSchema(BaseModel):
    """Plain environment variables exported to every command."""

    model_config = ConfigDict(extra="forbid")

    variables: dict[str, str] = Field(default_factory=dict)


class ArtifactsSchema(BaseModel):
    """Location and selection of the site output."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    base_directory: str = Field(default="public", alias="base-directory")
    files: list[str] = Field(default_factory=lambda: ["**/*"])

    @field_validator("base_directory")
    @classmethod
    def validate_base_directory(cls, v: str) -> str:
        """Keep the output directory inside the working tree."""
        path = PurePosixPath(v)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"base-directory must be a relative path, got '{v}'")
        return v


class BuildSpec(BaseModel):
    """Complete build specification."""

    model_config = ConfigDict(extra="forbid")

    version: str = "0.2"
    env: EnvSchema = Field(default_factory=EnvSchema)
    phases: dict[str, PhaseSchema] = Field(default_factory=dict)
    artifacts: ArtifactsSchema = Field(default_factory=ArtifactsSchema)

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v: object) -> str:
        """Accept numeric versions as written in YAML (0.2)."""
        return str(v)

    @field_validator("phases")
    @classmethod
    def validate_phases(cls, v: dict[str, PhaseSchema]) -> dict[str, PhaseSchema]:
        """Reject unknown phase names."""
        unknown = set(v) - set(PHASE_ORDER)
        if unknown:
            raise ValueError(
                f"unknown phases {sorted(unknown)}; allowed: {list(PHASE_ORDER)}"
            )
        return v

    def command_sequence(self) -> list[tuple[str, str]]:
        """Flatten phases into ordered (phase, command) pairs."""
        sequence: list[tuple[str, str]] = []
        for phase in PHASE_ORDER:
            if phase in self.phases:
                sequence.extend((phase, cmd) for cmd in self.phases[phase].commands)
        return sequence


DEFAULT_BUILDSPEC = BuildSpec(
    phases={
        "install": PhaseSchema(commands=["npm install"]),
        "build": PhaseSchema(commands=["npm run build"]),
    },
)


def load_buildspec(working_tree: Path) -> BuildSpec:
    """Load the build specification of a working tree.

    Args:
        working_tree: Root of the checked-out source.

    Returns:
        Parsed BuildSpec, or DEFAULT_BUILDSPEC if the tree has none.

    Raises:
        BuildSpecError: If the file exists but is invalid.
    """
    path = working_tree / BUILDSPEC_FILENAME
    if not path.is_file():
        return DEFAULT_BUILDSPEC

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise BuildSpecError(f"Cannot read {BUILDSPEC_FILENAME}: {e}") from e

    if not isinstance(data, dict):
        raise BuildSpecError(f"{BUILDSPEC_FILENAME} must be a YAML mapping")
    try:
        return BuildSpec.model_validate(data)
    except ValidationError as e:
        raise BuildSpecError(f"Invalid {BUILDSPEC_FILENAME}: {e}") from e


__all__ = [
    "BUILDSPEC_FILENAME",
    "DEFAULT_BUILDSPEC",
    "PHASE_ORDER",
    "BuildSpec",
    "BuildSpecError",
    "load_buildspec",
]
