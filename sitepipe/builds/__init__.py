"""Build stage module.

This module handles:
- Build specification parsing
- Running build commands with timeouts
- Artifact discovery and manifest generation
- The build stage used by the pipeline orchestrator
"""

from sitepipe.builds.artifacts import BuildArtifact
from sitepipe.builds.service import BuildStage

__all__ = ["BuildArtifact", "BuildStage"]
