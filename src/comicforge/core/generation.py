"""Gemini client for comic script, panel image and image edit generation.

This module provides :class:`GenerationClient`, the single point of contact
with the generative AI provider.  All calls go through the async surface of
the ``google-genai`` SDK (``client.aio``) so the five panel requests of a
comic can run concurrently on the server's event loop.

Key Responsibilities
--------------------
- **Script generation** — one structured-output call returning a title and
  five scene/narration pairs, validated against :class:`ComicScript`.
- **Panel rendering** — one image call per panel, conditioned on the scene
  text and the reference photo.  Failures never propagate: the panel falls
  back to the reference image and the result says so.
- **Bounded fan-out** — :meth:`GenerationClient.generate_panel_images` runs
  all five panel requests concurrently behind an ``asyncio.Semaphore`` and
  joins on all of them.  Results keep panel order.
- **Image editing** — a single instruction-driven edit of an input image.
  Unlike panels, a failed edit raises :class:`GenerationError`.
- **Lazy client creation** — the SDK client is built on first use, so the
  application starts without an API key and only generation endpoints fail.

Usage
-----
::

    from comicforge.core.config import config
    from comicforge.core.generation import GenerationClient

    client = GenerationClient(config)
    script = await client.generate_script("Adventure", "AI", photo, ["Mia"])
    results = await client.generate_panel_images(photo, script, ["Mia"])
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from google import genai
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from comicforge.core.config import ComicforgeConfig
from comicforge.core.image_store import decode_image_data, to_data_url
from comicforge.core.prompt_builder import (
    PANEL_KEYS,
    build_panel_prompt,
    build_script_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Adventure"


class GenerationError(Exception):
    """Raised when the provider cannot produce a usable result."""


# ---------------------------------------------------------------------------
# Structured output schema for the script call.
# No default values: the Gemini response schema does not accept them.
# ---------------------------------------------------------------------------


class ScriptPanel(BaseModel):
    """Scene and narration for one panel, before any image exists."""

    scene: str = Field(description="Visual description of the scene.")
    narration: str = Field(description="The caption text or dialogue.")


class ComicScript(BaseModel):
    """Title plus the five panels of a comic script."""

    title: str = Field(description="A creative title for the comic story.")
    box1: ScriptPanel
    box2: ScriptPanel
    box3: ScriptPanel
    box4: ScriptPanel
    box5: ScriptPanel = Field(description="The concluding panel that wraps up the story.")

    def panels(self) -> list[ScriptPanel]:
        """Panels in positional order box1..box5."""
        return [getattr(self, key) for key in PANEL_KEYS]


@dataclass
class PanelImageResult:
    """Outcome of one panel image request.

    Attributes:
        image: Data URL of the generated image, or the original reference
            image when generation failed.
        generated: ``True`` if the provider returned an image, ``False`` if
            the fallback was used.
        error: Short reason for the fallback, ``None`` when generated.
    """

    image: str
    generated: bool
    error: str | None = None

    @classmethod
    def fallback(cls, reference_image: str, reason: str) -> PanelImageResult:
        return cls(image=reference_image, generated=False, error=reason)


def extract_inline_image(response: Any) -> tuple[bytes, str] | None:
    """Return ``(bytes, mime_type)`` of the first inline image in a response.

    Returns ``None`` when the response carries no candidates, no parts, or
    only text parts.
    """
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []

    for part in parts:
        inline_data = getattr(part, "inline_data", None)
        data = getattr(inline_data, "data", None) if inline_data is not None else None
        if not data:
            continue
        mime_type = getattr(inline_data, "mime_type", None) or "image/png"
        if not mime_type.startswith("image/"):
            mime_type = "image/png"
        return bytes(data), mime_type
    return None


class GenerationClient:
    """Async wrapper around the Gemini ``generate_content`` API.

    Attributes:
        _config (ComicforgeConfig):
            Application configuration: API key, model names and the fan-out
            bound.
        _client:
            The ``genai.Client`` instance, or ``None`` until first use.
    """

    def __init__(self, config: ComicforgeConfig) -> None:
        self._config = config
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        """Return the SDK client, creating it on first use.

        Raises:
            GenerationError: If no API key is configured.
        """
        if self._client is None:
            if not self._config.gemini_api_key:
                raise GenerationError(
                    "API key is missing. Set COMICFORGE_GEMINI_API_KEY in the environment."
                )
            self._client = genai.Client(api_key=self._config.gemini_api_key)
        return self._client

    # ------------------------------------------------------------------
    # Script generation.
    # ------------------------------------------------------------------

    async def generate_script(
        self,
        category: str,
        source_type: str,
        reference_image: str,
        character_names: list[str],
    ) -> ComicScript:
        """Generate a title and five scene/narration pairs.

        The reference photo is sent alongside the prompt so the model can
        describe the main character's appearance in each scene.

        Args:
            category: Story genre.
            source_type: ``"Predefined"`` or ``"AI"``.
            reference_image: Inline base64 or data URL of the reference photo.
            character_names: Cast, main character first.

        Returns:
            The validated :class:`ComicScript`.

        Raises:
            GenerationError: If the provider call fails or the response does
                not match the script schema.
            ValueError: If ``reference_image`` is not valid base64.
        """
        image_bytes, mime_type = decode_image_data(reference_image)
        prompt = build_script_prompt(category, source_type, character_names)
        client = self._get_client()

        try:
            response = await client.aio.models.generate_content(
                model=self._config.text_model,
                contents=[
                    types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                    prompt,
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=ComicScript,
                ),
            )
        except Exception as e:
            logger.error(f"Script generation request failed: {e}")
            raise GenerationError("Failed to generate comic script") from e

        script = self._parse_script(response)
        logger.info(f"Generated script '{script.title}' ({category}, {source_type})")
        return script

    @staticmethod
    def _parse_script(response: Any) -> ComicScript:
        """Turn a structured-output response into a :class:`ComicScript`.

        Prefers the SDK's ``parsed`` value and falls back to the raw JSON
        text.  A missing or blank title becomes :data:`DEFAULT_TITLE`.
        """
        parsed = getattr(response, "parsed", None)
        if isinstance(parsed, ComicScript):
            script = parsed
        else:
            try:
                data = json.loads(getattr(response, "text", None) or "{}")
                if not isinstance(data, dict):
                    raise ValueError("script response is not a JSON object")
                data["title"] = data.get("title") or DEFAULT_TITLE
                script = ComicScript.model_validate(data)
            except (ValueError, ValidationError) as e:
                logger.error(f"Unusable script response: {e}")
                raise GenerationError("Script response did not contain five panels") from e

        if not script.title.strip():
            script.title = DEFAULT_TITLE
        return script

    # ------------------------------------------------------------------
    # Image generation.
    # ------------------------------------------------------------------

    async def _render(self, image_data: str, prompt: str) -> tuple[bytes, str] | None:
        image_bytes, mime_type = decode_image_data(image_data)
        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self._config.image_model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                prompt,
            ],
            config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
        )
        return extract_inline_image(response)

    async def generate_panel_image(
        self,
        reference_image: str,
        scene: str,
        character_names: list[str],
        panel_index: int,
    ) -> PanelImageResult:
        """Render one panel, falling back to the reference image on failure.

        Args:
            reference_image: Inline base64 or data URL of the reference photo.
            scene: Scene description for this panel.
            character_names: Cast, main character first.
            panel_index: 1-based panel position; panel 5 is rendered wide.

        Returns:
            A :class:`PanelImageResult`.  Never raises for provider errors.
        """
        prompt = build_panel_prompt(scene, character_names, panel_index)
        try:
            rendered = await self._render(reference_image, prompt)
        except Exception as e:
            logger.error(f"Error generating panel {panel_index}, falling back to original: {e}")
            return PanelImageResult.fallback(reference_image, str(e) or type(e).__name__)

        if rendered is None:
            logger.warning(f"No image data returned for panel {panel_index}, using original.")
            return PanelImageResult.fallback(reference_image, "no image in response")

        image_bytes, mime_type = rendered
        return PanelImageResult(image=to_data_url(image_bytes, mime_type), generated=True)

    async def generate_panel_images(
        self,
        reference_image: str,
        script: ComicScript,
        character_names: list[str],
    ) -> list[PanelImageResult]:
        """Render all five panels concurrently and wait for every one.

        Concurrency is bounded by ``config.max_concurrent_images``.  Each
        panel degrades to its fallback independently; one failure never
        cancels the others.

        Returns:
            Five results in positional order box1..box5.
        """
        semaphore = asyncio.Semaphore(self._config.max_concurrent_images)

        async def guarded(index: int, scene: str) -> PanelImageResult:
            async with semaphore:
                return await self.generate_panel_image(
                    reference_image, scene, character_names, index
                )

        results = await asyncio.gather(
            *(guarded(i, panel.scene) for i, panel in enumerate(script.panels(), start=1))
        )

        fallbacks = sum(1 for r in results if not r.generated)
        if fallbacks:
            logger.warning(f"{fallbacks} of {len(results)} panels used the reference image")
        return list(results)

    async def edit_image(self, image: str, prompt: str) -> str:
        """Apply a free-form edit instruction to an image.

        Returns:
            Data URL of the edited image.

        Raises:
            GenerationError: If the request fails or returns no image.
            ValueError: If ``image`` is not valid base64.
        """
        decode_image_data(image)
        try:
            rendered = await self._render(image, prompt)
        except GenerationError:
            raise
        except Exception as e:
            logger.error(f"Error editing image: {e}")
            raise GenerationError("Failed to edit image") from e

        if rendered is None:
            raise GenerationError("No image data returned from the model.")
        return to_data_url(*rendered)
