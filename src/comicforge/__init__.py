"""Comicforge - comic storage and AI comic generation API."""

__version__ = "0.1.0"

from comicforge.core.config import ComicforgeConfig, config

__all__ = [
    "ComicforgeConfig",
    "config",
]
