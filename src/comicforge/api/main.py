"""Comicforge — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()``
function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :mod:`comicforge.core.config` (``COMICFORGE_*``
  environment variables).
- **Persistence** is a SQLite file with two tables, accessed through
  :class:`~comicforge.core.repository.UserRepository` and
  :class:`~comicforge.core.repository.ComicRepository`.
- **Images** live on disk under the uploads directory, managed by
  :class:`~comicforge.core.image_store.ImageStore` and served by FastAPI's
  ``StaticFiles`` mount at ``/uploads``.
- **Generation** is delegated to
  :class:`~comicforge.core.generation.GenerationClient`.
- **Auth** is a bearer-token dependency,
  :func:`~comicforge.api.dependencies.require_identity`.

All shared objects are built in :func:`lifespan` and kept on ``app.state``.

Endpoints
---------
========  ==============================  ====================================
Method    Path                            Purpose
========  ==============================  ====================================
GET       ``/api/health``                 Liveness and version
POST      ``/api/auth/register``          Create an account, return a token
POST      ``/api/auth/login``             Exchange credentials for a token
GET       ``/api/auth/me``                Current account
GET       ``/api/comics``                 Caller's comics, newest first
GET       ``/api/comics/{id}``            Full comic with image URLs
POST      ``/api/comics``                 Create a comic
POST      ``/api/comics/generate``        Generate script and panel images
PUT       ``/api/comics/{id}``            Partial update
DELETE    ``/api/comics/{id}``            Delete a comic
POST      ``/api/images/upload``          Store one inline image
POST      ``/api/images/upload-multiple`` Store several inline images
DELETE    ``/api/images/{path}``          Best-effort image deletion
POST      ``/api/image-editor/edit``      Edit an image from a prompt
========  ==============================  ====================================

Usage
-----
CLI (installed entry point)::

    comicforge

Direct invocation::

    python -m comicforge.api.main
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Path, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from comicforge import __version__
from comicforge.api.dependencies import require_identity
from comicforge.api.models import (
    AuthResponse,
    AuthUser,
    ComicCreate,
    ComicPanels,
    ComicResponse,
    ComicSummaryResponse,
    ComicUpdate,
    EditImageRequest,
    EditImageResponse,
    GenerateRequest,
    GenerateResponse,
    ImageUploadMultipleRequest,
    ImageUploadRequest,
    ImageUploadResponse,
    LoginRequest,
    MeResponse,
    Panel,
    RegisterRequest,
)
from comicforge.core.config import config
from comicforge.core.database import Database
from comicforge.core.generation import GenerationClient, GenerationError
from comicforge.core.image_store import (
    PUBLIC_PREFIX,
    ImageStore,
    decode_image_data,
    is_base64_image,
)
from comicforge.core.prompt_builder import PANEL_KEYS
from comicforge.core.repository import ComicRecord, ComicRepository, UserRepository
from comicforge.core.security import (
    AuthError,
    Identity,
    create_access_token,
    decode_access_token,
    hash_password,
    parse_bearer,
    verify_password,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# SQLite INTEGER is a signed 64-bit value.
MAX_COMIC_ID = 2**63 - 1

# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared services on startup and store them on ``app.state``.

    ``config`` is read when the application starts rather than when this
    module is imported, so a different configuration can be swapped in
    before the server (or a test client) starts.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    database = Database(config.database_path)
    app.state.config = config
    app.state.users = UserRepository(database)
    app.state.comics = ComicRepository(database)
    app.state.image_store = ImageStore(config.uploads_dir, config.backend_url)
    app.state.generation_client = GenerationClient(config)

    if not config.jwt_secret:
        logger.warning("COMICFORGE_JWT_SECRET is not set; authenticated routes will fail.")
    if not config.gemini_api_key:
        logger.warning("COMICFORGE_GEMINI_API_KEY is not set; generation routes will fail.")
    logger.info(f"Comicforge {__version__} started (uploads at {config.uploads_dir}).")

    yield

    logger.info("Comicforge shutting down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Comicforge",
    description="Comic storage and Gemini-backed comic generation API.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Stored images are served directly at ``/uploads/images/...``.
app.mount(
    PUBLIC_PREFIX,
    StaticFiles(directory=str(config.uploads_dir), check_dir=False),
    name="uploads",
)


# ---------------------------------------------------------------------------
# Error handlers.
# ---------------------------------------------------------------------------


def _describe_validation_error(exc: RequestValidationError) -> str:
    """Collapse pydantic errors into one short client-facing message."""
    errors = exc.errors()
    missing = [
        ".".join(str(p) for p in err["loc"] if p != "body")
        for err in errors
        if err.get("type") == "missing"
    ]
    if missing:
        named = [m for m in missing if m]
        return f"Missing required fields: {', '.join(named)}" if named else "Missing required fields"
    if not errors:
        return "Invalid request"

    first = errors[0]
    message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{field}: {message}" if field else message


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed or incomplete requests as 400 rather than 422."""
    return JSONResponse(status_code=400, content={"detail": _describe_validation_error(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures and answer with a generic 500."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------------------------------------------------------------------------
# Response helpers.
# ---------------------------------------------------------------------------


def _jwt_secret() -> str:
    return app.state.config.jwt_secret


def _issue_token(user_id: int, email: str) -> str:
    try:
        return create_access_token(
            Identity(user_id=user_id, email=email),
            _jwt_secret(),
            int(app.state.config.token_lifetime.total_seconds()),
        )
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


def _resolve_panels(panels: dict[str, Any], store: ImageStore) -> dict[str, Any]:
    """Copy stored panels, turning each panel's image path into a URL."""
    resolved: dict[str, Any] = {}
    for key in PANEL_KEYS:
        panel = panels.get(key)
        if isinstance(panel, dict):
            panel = dict(panel)
            if panel.get("imageUrl"):
                panel["imageUrl"] = store.resolve_reference(panel["imageUrl"])
        resolved[key] = panel
    return resolved


def _comic_response(comic: ComicRecord) -> ComicResponse:
    store: ImageStore = app.state.image_store
    return ComicResponse(
        id=str(comic.id),
        title=comic.title,
        created_at=comic.created_at,
        category=comic.category,
        source_type=comic.source_type,
        character_names=comic.character_names,
        original_image=store.resolve_reference(comic.original_image) or "",
        panels=_resolve_panels(comic.panels, store),
    )


def _dump_panels(panels: ComicPanels) -> dict[str, Any]:
    """Serialise panels in the stored (camelCase) JSON shape."""
    return panels.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Health.
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# Auth routes.
# ---------------------------------------------------------------------------


@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
async def register(req: RegisterRequest) -> AuthResponse:
    """Create an account and return a token for it.

    Raises:
        HTTPException: 400 for missing fields, a short password, or an email
            that is already registered.
    """
    email = req.email.strip()
    name = req.name.strip()
    if not email or not req.password or not name:
        raise HTTPException(status_code=400, detail="Email, password, and name are required")
    if len(req.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )

    users: UserRepository = app.state.users
    if users.exists(email):
        raise HTTPException(status_code=400, detail="User already exists")

    try:
        user = users.create(email, hash_password(req.password), name, req.phone or None)
    except sqlite3.IntegrityError as e:
        # Lost a race against a concurrent registration for the same email.
        raise HTTPException(status_code=400, detail="User already exists") from e

    return AuthResponse(
        token=_issue_token(user.id, user.email),
        user=AuthUser(id=str(user.id), email=user.email, name=user.name),
    )


@app.post("/api/auth/login", response_model=AuthResponse)
async def login(req: LoginRequest) -> AuthResponse:
    """Exchange email and password for a token.

    Unknown email and wrong password produce the same 401 so the response
    does not reveal which accounts exist.
    """
    if not req.email or not req.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = app.state.users.get_by_email(req.email.strip())
    if user is None or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return AuthResponse(
        token=_issue_token(user.id, user.email),
        user=AuthUser(id=str(user.id), email=user.email, name=user.name),
    )


@app.get("/api/auth/me", response_model=MeResponse)
async def me(authorization: str | None = Header(default=None)) -> MeResponse:
    """Return the account behind the bearer token.

    Unlike the shared auth gate, any token problem here is reported as 401.
    """
    token = parse_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        identity = decode_access_token(token, _jwt_secret())
    except AuthError as e:
        if e.status_code == 500:
            raise HTTPException(status_code=500, detail=e.message) from e
        raise HTTPException(status_code=401, detail="Invalid token") from e

    user = app.state.users.get_by_id(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    return MeResponse(id=str(user.id), email=user.email, name=user.name, phone=user.phone)


# ---------------------------------------------------------------------------
# Comic routes.
# ---------------------------------------------------------------------------


@app.get("/api/comics", response_model=list[ComicSummaryResponse])
async def list_comics(identity: Identity = Depends(require_identity)) -> list[ComicSummaryResponse]:
    """Summaries of the caller's comics, newest first."""
    summaries = app.state.comics.list_for_user(identity.user_id)
    return [
        ComicSummaryResponse(
            id=str(s.id),
            title=s.title,
            category=s.category,
            created_at=s.created_at,
        )
        for s in summaries
    ]


@app.post("/api/comics/generate", response_model=GenerateResponse)
async def generate_comic(
    req: GenerateRequest,
    identity: Identity = Depends(require_identity),
) -> GenerateResponse:
    """Generate a script, then render its five panels concurrently.

    Panels whose image request fails keep the original reference image.
    When ``persist_generated_images`` is on, generated panel images are
    written to the image store and returned as URLs.

    Raises:
        HTTPException: 400 if the reference image cannot be decoded, 500 if
            script generation fails.
    """
    try:
        decode_image_data(req.image_base64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid base64 image format") from e

    client: GenerationClient = app.state.generation_client
    try:
        script = await client.generate_script(
            req.category, req.source_type, req.image_base64, req.character_names
        )
        results = await client.generate_panel_images(req.image_base64, script, req.character_names)
    except GenerationError as e:
        logger.error(f"Error generating comic for user {identity.user_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Failed to generate comic") from e

    store: ImageStore = app.state.image_store
    persist = app.state.config.persist_generated_images
    panels: dict[str, Panel] = {}
    for index, (key, scripted, result) in enumerate(zip(PANEL_KEYS, script.panels(), results), start=1):
        image_url = result.image
        if result.generated and persist:
            image_url = store.url_for(store.upload(result.image, label=f"panel{index}"))
        panels[key] = Panel(scene=scripted.scene, narration=scripted.narration, image_url=image_url)

    logger.info(f"Generated comic '{script.title}' for user {identity.user_id}")
    return GenerateResponse(title=script.title, panels=ComicPanels(**panels))


@app.get("/api/comics/{comic_id}", response_model=ComicResponse)
async def get_comic(
    comic_id: int = Path(..., ge=1, le=MAX_COMIC_ID),
    identity: Identity = Depends(require_identity),
) -> ComicResponse:
    """Full comic, only if owned by the caller.

    Raises:
        HTTPException: 404 if the comic does not exist or is not owned.
    """
    comic = app.state.comics.get(comic_id, identity.user_id)
    if comic is None:
        logger.info(f"Comic not found: id={comic_id} user={identity.user_id}")
        raise HTTPException(status_code=404, detail="Comic not found")
    return _comic_response(comic)


@app.post("/api/comics", response_model=ComicResponse, status_code=201)
async def create_comic(req: ComicCreate, identity: Identity = Depends(require_identity)) -> ComicResponse:
    """Persist a comic for the caller and echo it back with its new id."""
    comic = app.state.comics.create(
        identity.user_id,
        title=req.title,
        category=req.category,
        source_type=req.source_type,
        character_names=req.character_names,
        original_image=req.original_image,
        panels=_dump_panels(req.panels),
    )
    return ComicResponse(
        id=str(comic.id),
        title=comic.title,
        created_at=comic.created_at,
        category=comic.category,
        source_type=comic.source_type,
        character_names=comic.character_names,
        original_image=comic.original_image,
        panels=comic.panels,
    )


@app.put("/api/comics/{comic_id}", response_model=ComicResponse)
async def update_comic(
    req: ComicUpdate,
    comic_id: int = Path(..., ge=1, le=MAX_COMIC_ID),
    identity: Identity = Depends(require_identity),
) -> ComicResponse:
    """Rewrite the supplied fields of an owned comic.

    Raises:
        HTTPException: 404 if the comic is missing or not owned, 400 if the
            body names no fields.
    """
    comics: ComicRepository = app.state.comics
    if comics.get(comic_id, identity.user_id) is None:
        raise HTTPException(status_code=404, detail="Comic not found")

    changes = req.model_dump(exclude_unset=True, exclude_none=True)
    if req.panels is not None:
        changes["panels"] = _dump_panels(req.panels)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    updated = comics.update(comic_id, identity.user_id, changes)
    if updated is None:
        raise HTTPException(status_code=404, detail="Comic not found")
    return _comic_response(updated)


@app.delete("/api/comics/{comic_id}", status_code=204)
async def delete_comic(
    comic_id: int = Path(..., ge=1, le=MAX_COMIC_ID),
    identity: Identity = Depends(require_identity),
) -> Response:
    """Delete an owned comic.  A repeated delete reports 404."""
    if not app.state.comics.delete(comic_id, identity.user_id):
        raise HTTPException(status_code=404, detail="Comic not found")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Image routes.
# ---------------------------------------------------------------------------


def _store_upload(item: ImageUploadRequest) -> ImageUploadResponse:
    if not is_base64_image(item.image_base64):
        raise HTTPException(status_code=400, detail="Invalid base64 image format")

    store: ImageStore = app.state.image_store
    try:
        image_path = store.upload(item.image_base64, item.file_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid base64 image format") from e
    return ImageUploadResponse(image_path=image_path, image_url=store.url_for(image_path))


@app.post("/api/images/upload", response_model=ImageUploadResponse)
async def upload_image(
    req: ImageUploadRequest,
    identity: Identity = Depends(require_identity),
) -> ImageUploadResponse:
    """Store one inline image and return its relative path and URL."""
    return _store_upload(req)


@app.post("/api/images/upload-multiple", response_model=list[ImageUploadResponse])
async def upload_images(
    req: ImageUploadMultipleRequest,
    identity: Identity = Depends(require_identity),
) -> list[ImageUploadResponse]:
    """Store several inline images.

    Every image is validated before any is written, so a bad entry leaves
    nothing behind.
    """
    for item in req.images:
        if not is_base64_image(item.image_base64):
            raise HTTPException(status_code=400, detail="Invalid base64 image format")
        try:
            decode_image_data(item.image_base64)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid base64 image format") from e
    return [_store_upload(item) for item in req.images]


@app.delete("/api/images/{image_path:path}", status_code=204)
async def delete_image(image_path: str, identity: Identity = Depends(require_identity)) -> Response:
    """Best-effort deletion; succeeds even if the file is already gone."""
    app.state.image_store.delete(image_path)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Image editor.
# ---------------------------------------------------------------------------


@app.post("/api/image-editor/edit", response_model=EditImageResponse)
async def edit_image(
    req: EditImageRequest,
    identity: Identity = Depends(require_identity),
) -> EditImageResponse:
    """Apply a prompt-driven edit to an image.

    Raises:
        HTTPException: 400 for undecodable input, 500 if the model returns
            no image or the request fails.
    """
    try:
        decode_image_data(req.image_base64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid base64 image format") from e

    try:
        edited = await app.state.generation_client.edit_image(req.image_base64, req.prompt)
    except GenerationError as e:
        logger.error(f"Error editing image for user {identity.user_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e) or "Failed to edit image") from e

    if app.state.config.persist_generated_images:
        store: ImageStore = app.state.image_store
        edited = store.url_for(store.upload(edited, label="edited"))
    return EditImageResponse(image_url=edited)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Host and port come from ``COMICFORGE_SERVER_HOST`` and
    ``COMICFORGE_SERVER_PORT`` (defaults ``0.0.0.0:3001``).  Registered as
    the ``comicforge`` console script in ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "comicforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
