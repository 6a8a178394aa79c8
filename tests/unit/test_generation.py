"""Tests for comicforge.core.generation — the Gemini client wrapper.

The SDK client is replaced with a MagicMock whose async
``aio.models.generate_content`` is an AsyncMock, so no network access occurs.
Coroutines are driven with ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from comicforge.core.config import ComicforgeConfig
from comicforge.core.generation import (
    DEFAULT_TITLE,
    ComicScript,
    GenerationClient,
    GenerationError,
    extract_inline_image,
)
from comicforge.core.image_store import decode_image_data
from tests.conftest import PNG_DATA_URL, make_script

# ---------------------------------------------------------------------------
# Response builders.
# ---------------------------------------------------------------------------


def _image_response(data: bytes, mime_type: str = "image/png"):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime_type), text=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def _text_only_response(text: str = "I cannot draw that."):
    part = SimpleNamespace(inline_data=None, text=text)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def _script_json(title: str | None = "Moon Map") -> str:
    data = {f"box{i}": {"scene": f"Scene {i}", "narration": f"Narration {i}"} for i in range(1, 6)}
    if title is not None:
        data["title"] = title
    return json.dumps(data)


def _prompt_of(call) -> str:
    return call.kwargs["contents"][1]


@pytest.fixture
def generate_content() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def client(test_config: ComicforgeConfig, generate_content: AsyncMock) -> GenerationClient:
    gen = GenerationClient(test_config)
    sdk = MagicMock()
    sdk.aio.models.generate_content = generate_content
    gen._client = sdk
    return gen


# ---------------------------------------------------------------------------
# Response parsing.
# ---------------------------------------------------------------------------


class TestExtractInlineImage:
    """Test extract_inline_image()."""

    def test_image_part_found(self):
        assert extract_inline_image(_image_response(b"img", "image/jpeg")) == (b"img", "image/jpeg")

    def test_text_only_response(self):
        assert extract_inline_image(_text_only_response()) is None

    def test_no_candidates(self):
        assert extract_inline_image(SimpleNamespace(candidates=[])) is None

    def test_non_image_mime_defaults_to_png(self):
        assert extract_inline_image(_image_response(b"img", "application/octet-stream")) == (
            b"img",
            "image/png",
        )


class TestParseScript:
    """Test GenerationClient._parse_script()."""

    def test_parsed_value_preferred(self):
        script = make_script("Parsed")
        response = SimpleNamespace(parsed=script, text="not json")
        assert GenerationClient._parse_script(response) is script

    def test_falls_back_to_text(self):
        response = SimpleNamespace(parsed=None, text=_script_json())
        script = GenerationClient._parse_script(response)
        assert script.title == "Moon Map"
        assert script.box4.narration == "Narration 4"

    def test_missing_title_defaulted(self):
        response = SimpleNamespace(parsed=None, text=_script_json(title=None))
        assert GenerationClient._parse_script(response).title == DEFAULT_TITLE

    def test_blank_title_defaulted(self):
        response = SimpleNamespace(parsed=None, text=_script_json(title="   "))
        assert GenerationClient._parse_script(response).title == DEFAULT_TITLE

    def test_missing_panel_rejected(self):
        data = json.loads(_script_json())
        del data["box5"]
        response = SimpleNamespace(parsed=None, text=json.dumps(data))
        with pytest.raises(GenerationError):
            GenerationClient._parse_script(response)

    def test_invalid_json_rejected(self):
        with pytest.raises(GenerationError):
            GenerationClient._parse_script(SimpleNamespace(parsed=None, text="{oops"))


# ---------------------------------------------------------------------------
# Script generation.
# ---------------------------------------------------------------------------


class TestGenerateScript:
    """Test GenerationClient.generate_script()."""

    def test_returns_script(self, client, generate_content):
        generate_content.return_value = SimpleNamespace(parsed=None, text=_script_json())
        script = asyncio.run(client.generate_script("Adventure", "AI", PNG_DATA_URL, ["Mia"]))
        assert isinstance(script, ComicScript)
        assert script.title == "Moon Map"

    def test_uses_text_model_and_schema(self, client, generate_content, test_config):
        generate_content.return_value = SimpleNamespace(parsed=None, text=_script_json())
        asyncio.run(client.generate_script("Adventure", "Predefined", PNG_DATA_URL, ["Mia"]))

        call = generate_content.call_args
        assert call.kwargs["model"] == test_config.text_model
        assert call.kwargs["config"].response_mime_type == "application/json"
        assert "Pick a classic trope" in _prompt_of(call)

    def test_request_failure_raises(self, client, generate_content):
        generate_content.side_effect = RuntimeError("quota exceeded")
        with pytest.raises(GenerationError):
            asyncio.run(client.generate_script("Adventure", "AI", PNG_DATA_URL, ["Mia"]))

    def test_missing_api_key_raises(self, test_config):
        test_config.gemini_api_key = ""
        gen = GenerationClient(test_config)
        with pytest.raises(GenerationError, match="API key"):
            asyncio.run(gen.generate_script("Adventure", "AI", PNG_DATA_URL, ["Mia"]))


# ---------------------------------------------------------------------------
# Panel images.
# ---------------------------------------------------------------------------


class TestGeneratePanelImages:
    """Test GenerationClient.generate_panel_images() — concurrent fan-out."""

    def test_all_panels_generated_in_order(self, client, generate_content):
        async def respond(**kwargs):
            prompt = kwargs["contents"][1]
            index = prompt.split("Create comic book panel ", 1)[1][0]
            return _image_response(f"panel-{index}".encode())

        generate_content.side_effect = respond
        results = asyncio.run(client.generate_panel_images(PNG_DATA_URL, make_script(), ["Mia"]))

        assert len(results) == 5
        assert all(r.generated for r in results)
        decoded = [decode_image_data(r.image)[0] for r in results]
        assert decoded == [f"panel-{i}".encode() for i in range(1, 6)]

    def test_one_failure_falls_back_without_cancelling_others(self, client, generate_content):
        async def respond(**kwargs):
            if "panel 3 of 5" in kwargs["contents"][1]:
                raise RuntimeError("safety block")
            return _image_response(b"drawn")

        generate_content.side_effect = respond
        results = asyncio.run(client.generate_panel_images(PNG_DATA_URL, make_script(), ["Mia"]))

        assert [r.generated for r in results] == [True, True, False, True, True]
        assert results[2].image == PNG_DATA_URL
        assert "safety block" in results[2].error
        assert generate_content.await_count == 5

    def test_text_only_response_falls_back(self, client, generate_content):
        generate_content.return_value = _text_only_response()
        result = asyncio.run(client.generate_panel_image(PNG_DATA_URL, "A scene", ["Mia"], 1))
        assert result.generated is False
        assert result.image == PNG_DATA_URL

    def test_uses_image_model(self, client, generate_content, test_config):
        generate_content.return_value = _image_response(b"drawn")
        asyncio.run(client.generate_panel_image(PNG_DATA_URL, "A scene", ["Mia"], 5))
        call = generate_content.call_args
        assert call.kwargs["model"] == test_config.image_model
        assert "16:9 landscape format" in _prompt_of(call)

    def test_concurrency_is_bounded(self, test_config, generate_content):
        test_config.max_concurrent_images = 2
        gen = GenerationClient(test_config)
        sdk = MagicMock()
        sdk.aio.models.generate_content = generate_content
        gen._client = sdk

        in_flight = 0
        peak = 0

        async def respond(**kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return _image_response(b"drawn")

        generate_content.side_effect = respond
        asyncio.run(gen.generate_panel_images(PNG_DATA_URL, make_script(), ["Mia"]))
        assert peak == 2


# ---------------------------------------------------------------------------
# Image editing.
# ---------------------------------------------------------------------------


class TestEditImage:
    """Test GenerationClient.edit_image()."""

    def test_returns_data_url(self, client, generate_content):
        generate_content.return_value = _image_response(b"edited", "image/webp")
        edited = asyncio.run(client.edit_image(PNG_DATA_URL, "add a hat"))
        assert decode_image_data(edited) == (b"edited", "image/webp")
        assert _prompt_of(generate_content.call_args) == "add a hat"

    def test_no_image_raises(self, client, generate_content):
        generate_content.return_value = _text_only_response()
        with pytest.raises(GenerationError, match="No image data"):
            asyncio.run(client.edit_image(PNG_DATA_URL, "add a hat"))

    def test_request_failure_raises(self, client, generate_content):
        generate_content.side_effect = RuntimeError("boom")
        with pytest.raises(GenerationError):
            asyncio.run(client.edit_image(PNG_DATA_URL, "add a hat"))

    def test_invalid_image_raises_value_error(self, client):
        with pytest.raises(ValueError):
            asyncio.run(client.edit_image("data:image/png;base64,%%%", "add a hat"))
