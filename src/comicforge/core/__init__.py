"""Core services for the Comicforge API.

- **config**: Pydantic Settings configuration (``COMICFORGE_*`` variables)
- **database** / **repository**: SQLite access to the users and comics tables
- **security**: password hashing and access tokens
- **image_store**: on-disk image storage and URL resolution
- **prompt_builder**: script and panel prompt compilation
- **generation**: Gemini client for scripts, panel images and image edits
"""

from comicforge.core.config import ComicforgeConfig, config

__all__ = [
    "ComicforgeConfig",
    "config",
]
