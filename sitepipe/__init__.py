"""sitepipe - Continuous deployment for static websites.

This package watches a source repository, builds a static site artifact,
publishes it to an origin content store, and serves it through a caching
edge layer with an apex-to-www redirect.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
