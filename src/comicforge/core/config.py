"""Configuration management for the Comicforge API.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the COMICFORGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (COMICFORGE_* prefix)
2. .env file in the project root
3. Default values defined in ComicforgeConfig

Example .env file:
    COMICFORGE_JWT_SECRET=change-me
    COMICFORGE_GEMINI_API_KEY=...
    COMICFORGE_BACKEND_URL=https://api.example.com
    COMICFORGE_UPLOADS_DIR=uploads

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.

Usage Example
-------------
    from comicforge.core.config import config

    print(config.database_path)
    print(config.uploads_dir)

Directory Management
--------------------
The configuration creates required directories on initialization:
- uploads_dir: root of the on-disk image store
- the parent directory of database_path
"""

import re
from datetime import timedelta
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> timedelta:
    """Parse a short duration string such as ``"7d"`` or ``"12h"``.

    A bare number is read as seconds.

    Raises:
        ValueError: If the string is not a positive ``<int><unit>`` value.
    """
    match = _DURATION_RE.match(value)
    if not match or int(match.group(1)) <= 0:
        raise ValueError(f"Invalid duration: {value!r}")
    return timedelta(seconds=int(match.group(1)) * _DURATION_UNITS[match.group(2)])


class ComicforgeConfig(BaseSettings):
    """Main configuration for the Comicforge API.

    Values are loaded from environment variables with the COMICFORGE_ prefix,
    with fallback to the defaults defined here.

    Attributes
    ----------
    Storage:
        database_path : Path
            SQLite database file holding the users and comics tables
        uploads_dir : Path
            Root directory of the image store (served under /uploads)
        backend_url : str
            Public base URL used to turn stored paths into absolute URLs

    Auth:
        jwt_secret : str
            HMAC secret used to sign access tokens. Empty disables auth.
        jwt_expires_in : str
            Token lifetime as a duration string (30s, 15m, 12h, 7d)

    Generation:
        gemini_api_key : str
            API key for the Gemini endpoint
        text_model : str
            Model used for structured script generation
        image_model : str
            Model used for panel rendering and image editing
        max_concurrent_images : int
            Upper bound on simultaneous image requests per comic
        persist_generated_images : bool
            Store generated images on disk and return URLs instead of
            inline data URLs

    Server:
        server_host : str
        server_port : int
        cors_origins : list[str]
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMICFORGE_",
        case_sensitive=False,
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/comicforge.db"),
        description="SQLite database file",
    )
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for stored images",
    )
    backend_url: str = Field(
        default="http://localhost:3001",
        description="Public base URL used to build image URLs",
    )

    # Auth
    jwt_secret: str = Field(
        default="",
        description="HMAC secret for access tokens",
    )
    jwt_expires_in: str = Field(
        default="7d",
        description="Access token lifetime (e.g. 7d, 12h, 30m)",
    )

    # Generation
    gemini_api_key: str = Field(
        default="",
        description="Gemini API key",
    )
    text_model: str = Field(
        default="gemini-2.5-flash",
        description="Model used for comic script generation",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model used for panel images and image editing",
    )
    max_concurrent_images: int = Field(
        default=5,
        description="Maximum simultaneous image generation requests",
        ge=1,
        le=16,
    )
    persist_generated_images: bool = Field(
        default=True,
        description="Write generated images to the image store",
    )

    # Server
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    @field_validator("jwt_expires_in")
    @classmethod
    def validate_jwt_expires_in(cls, value: str) -> str:
        """Reject unparseable token lifetimes at startup."""
        parse_duration(value)
        return value

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def token_lifetime(self) -> timedelta:
        """Access token lifetime parsed from ``jwt_expires_in``."""
        return parse_duration(self.jwt_expires_in)


# Global configuration instance, loaded from COMICFORGE_* variables and .env.
config = ComicforgeConfig()
