"""Publish stage module.

This module handles:
- The publish target (live site origin and its versioned state)
- Superset-first replacement of the live site with an artifact
"""

from sitepipe.publish.service import PublishError, PublishStage
from sitepipe.publish.target import LocalDirectoryTarget, PublishedState

__all__ = ["LocalDirectoryTarget", "PublishError", "PublishStage", "PublishedState"]
