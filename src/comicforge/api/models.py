"""Pydantic request and response models for the Comicforge API.

These models define the JSON schema for every endpoint.  FastAPI uses them
for request validation, serialisation and OpenAPI generation.  Field names
are snake_case in Python and camelCase on the wire (``sourceType``,
``imageBase64``, ``createdAt``); both spellings are accepted on input.

Models
------
RegisterRequest, LoginRequest, AuthResponse, MeResponse
    Account endpoints under ``/api/auth``.
Panel, ComicPanels
    The five-panel structure shared by stored and generated comics.
ComicCreate, ComicUpdate, ComicSummaryResponse, ComicResponse
    Comic CRUD under ``/api/comics``.
GenerateRequest, GenerateResponse
    ``POST /api/comics/generate``.
ImageUploadRequest, ImageUploadMultipleRequest, ImageUploadResponse
    ``/api/images`` endpoints.
EditImageRequest, EditImageResponse
    ``POST /api/image-editor/edit``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Category = Literal["Adventure", "Fairy Tale", "Mythology", "Sci-Fi", "Superhero", "Fantasy"]
SourceType = Literal["Predefined", "AI"]


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_utf8(value: Any) -> Any:
    """Reject strings holding lone surrogates, which JSON allows but UTF-8 does not."""
    items = value if isinstance(value, list) else [value]
    for item in items:
        if isinstance(item, str):
            try:
                item.encode("utf-8")
            except UnicodeEncodeError as e:
                raise ValueError("must be valid UTF-8 text") from e
    return value


class RequestModel(CamelModel):
    """Base for bodies whose text is stored or hashed."""

    @field_validator("*")
    @classmethod
    def require_utf8(cls, value: Any) -> Any:
        return _require_utf8(value)


# ---------------------------------------------------------------------------
# Auth.
# ---------------------------------------------------------------------------


class RegisterRequest(RequestModel):
    """Request body for ``POST /api/auth/register``."""

    email: str = Field(..., description="Account email; must be unique.")
    password: str = Field(..., description="Plain-text password, at least 6 characters.")
    name: str = Field(..., description="Display name.")
    phone: str | None = Field(default=None, description="Optional phone number.")


class LoginRequest(CamelModel):
    """Request body for ``POST /api/auth/login``.

    Only the email is checked for encodable text.  Any password, whatever
    it contains, goes through verification and fails as bad credentials.
    """

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def require_utf8_email(cls, value: str) -> str:
        return _require_utf8(value)


class AuthUser(CamelModel):
    id: str
    email: str
    name: str


class AuthResponse(CamelModel):
    """Token plus the public view of the account it was issued for."""

    token: str
    user: AuthUser


class MeResponse(CamelModel):
    id: str
    email: str
    name: str
    phone: str | None = None


# ---------------------------------------------------------------------------
# Comics.
# ---------------------------------------------------------------------------


class Panel(RequestModel):
    """One scene/narration/image triple."""

    scene: str
    narration: str
    image_url: str | None = Field(default=None, description="Stored path, URL or data URL.")


class ComicPanels(RequestModel):
    """Exactly five panels, box1 through box5."""

    box1: Panel
    box2: Panel
    box3: Panel
    box4: Panel
    box5: Panel


class ComicCreate(RequestModel):
    """Request body for ``POST /api/comics``.  Every field is required."""

    title: str = Field(..., min_length=1)
    category: Category
    source_type: SourceType
    character_names: list[str]
    original_image: str = Field(..., min_length=1)
    panels: ComicPanels


class ComicUpdate(RequestModel):
    """Request body for ``PUT /api/comics/{id}``.

    Only fields present in the body are rewritten.
    """

    title: str | None = Field(default=None, min_length=1)
    category: Category | None = None
    source_type: SourceType | None = None
    character_names: list[str] | None = None
    original_image: str | None = Field(default=None, min_length=1)
    panels: ComicPanels | None = None


class ComicSummaryResponse(CamelModel):
    id: str
    title: str
    category: str
    created_at: int = Field(..., description="Creation time in epoch milliseconds.")


class ComicResponse(CamelModel):
    """Full comic with image references resolved to URLs."""

    id: str
    title: str
    created_at: int | None = None
    category: str
    source_type: str
    character_names: list[str]
    original_image: str
    panels: dict[str, Any]


class GenerateRequest(RequestModel):
    """Request body for ``POST /api/comics/generate``.

    Attributes:
        category: Story genre.
        source_type: ``"Predefined"`` for a classic trope, ``"AI"`` for an
            original story.
        image_base64: Reference photo as a data URL or bare base64.
        character_names: Cast, main character first.  Blank names are
            dropped; at least one must remain.
    """

    category: Category
    source_type: SourceType
    image_base64: str = Field(..., min_length=1)
    character_names: list[str]

    @field_validator("character_names")
    @classmethod
    def require_character_name(cls, names: list[str]) -> list[str]:
        cleaned = [n.strip() for n in names if n and n.strip()]
        if not cleaned:
            raise ValueError("At least one character name is required")
        return cleaned


class GenerateResponse(CamelModel):
    title: str
    panels: ComicPanels


# ---------------------------------------------------------------------------
# Images.
# ---------------------------------------------------------------------------


class ImageUploadRequest(RequestModel):
    """Request body for ``POST /api/images/upload``."""

    image_base64: str = Field(..., description="Data URL or bare base64 image.")
    file_name: str | None = Field(default=None, description="Optional filename label.")


class ImageUploadMultipleRequest(RequestModel):
    images: list[ImageUploadRequest] = Field(..., min_length=1)


class ImageUploadResponse(CamelModel):
    image_path: str = Field(..., description="Relative path to persist, e.g. images/x.png.")
    image_url: str = Field(..., description="Fully-qualified URL of the stored image.")


class EditImageRequest(RequestModel):
    """Request body for ``POST /api/image-editor/edit``."""

    image_base64: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)


class EditImageResponse(CamelModel):
    image_url: str
