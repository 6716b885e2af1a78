"""Source watching module.

This module handles:
- Qualifying and parsing repository change events
- De-duplicating revisions before they reach the orchestrator
- Polling a branch head when events cannot be pushed
- Checking revisions out for builds
"""

from sitepipe.source.events import InvalidTriggerError, is_qualifying_event, parse_event
from sitepipe.source.watcher import SourceWatcher

__all__ = ["InvalidTriggerError", "SourceWatcher", "is_qualifying_event", "parse_event"]
