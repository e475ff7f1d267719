"""
pricewatch Python package.

This package hosts the shared store connection, the polling price watcher,
the run/session recorder, and the CLI/HTTP entry points that compose them.
"""

from .__version__ import __version__

__all__ = ["__version__"]
