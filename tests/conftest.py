"""Shared pytest fixtures for Comicforge tests."""

import base64
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from comicforge.core.config import ComicforgeConfig
from comicforge.core.database import Database
from comicforge.core.generation import ComicScript, GenerationError, PanelImageResult, ScriptPanel
from comicforge.core.image_store import ImageStore
from comicforge.core.repository import ComicRepository, UserRepository

# 1x1 transparent PNG.
PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = f"data:image/png;base64,{PNG_BASE64}"


def make_panels(image_url: str | None = None) -> dict:
    """Five camelCase panels as the API expects them."""
    panels = {}
    for i in range(1, 6):
        panel = {"scene": f"Scene {i}", "narration": f"Narration {i}"}
        if image_url is not None:
            panel["imageUrl"] = image_url
        panels[f"box{i}"] = panel
    return panels


def make_script(title: str = "Mia and the Moon Map") -> ComicScript:
    return ComicScript(
        title=title,
        **{
            f"box{i}": ScriptPanel(scene=f"Scene {i}", narration=f"Narration {i}")
            for i in range(1, 6)
        },
    )


class FakeGenerationClient:
    """Stand-in for GenerationClient that never touches the network.

    Attributes:
        calls: Names of the methods invoked, in order.
        failing_panels: 1-based panel indexes that return the fallback.
        script_error: Exception raised from generate_script, if set.
        edit_result: Value returned by edit_image; ``None`` raises.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.failing_panels: set[int] = set()
        self.script_error: Exception | None = None
        self.edit_result: str | None = PNG_DATA_URL

    async def generate_script(self, category, source_type, reference_image, character_names):
        self.calls.append("generate_script")
        if self.script_error is not None:
            raise self.script_error
        return make_script()

    async def generate_panel_images(self, reference_image, script, character_names):
        self.calls.append("generate_panel_images")
        results = []
        for index in range(1, 6):
            if index in self.failing_panels:
                results.append(PanelImageResult.fallback(reference_image, "boom"))
            else:
                data = base64.b64encode(f"panel-{index}".encode()).decode()
                results.append(PanelImageResult(image=f"data:image/png;base64,{data}", generated=True))
        return results

    async def edit_image(self, image, prompt):
        self.calls.append("edit_image")
        if self.edit_result is None:
            raise GenerationError("No image data returned from the model.")
        return self.edit_result


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ComicforgeConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ComicforgeConfig instance for testing
    """
    return ComicforgeConfig(
        _env_file=None,
        database_path=temp_dir / "data" / "test.db",
        uploads_dir=temp_dir / "uploads",
        backend_url="https://api.test",
        jwt_secret="test-secret-key-with-enough-length",
        jwt_expires_in="7d",
        gemini_api_key="test-api-key",
    )


@pytest.fixture
def database(test_config: ComicforgeConfig) -> Database:
    return Database(test_config.database_path)


@pytest.fixture
def users(database: Database) -> UserRepository:
    return UserRepository(database)


@pytest.fixture
def comics(database: Database) -> ComicRepository:
    return ComicRepository(database)


@pytest.fixture
def image_store(test_config: ComicforgeConfig) -> ImageStore:
    return ImageStore(test_config.uploads_dir, test_config.backend_url)


@pytest.fixture
def fake_generation_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def test_client(
    monkeypatch, test_config: ComicforgeConfig, fake_generation_client: FakeGenerationClient
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to temporary storage and a fake generator.

    The module-level ``config`` is swapped before the lifespan runs, so the
    database and image store are created inside ``temp_dir``.
    """
    from comicforge.api import main as main_module

    monkeypatch.setattr(main_module, "config", test_config)
    with TestClient(main_module.app) as client:
        main_module.app.state.generation_client = fake_generation_client
        yield client


def register_user(client: TestClient, email: str = "mia@example.com", password: str = "secret123") -> dict:
    """Register an account and return ``{"token", "user", "headers"}``."""
    resp = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": email.split("@")[0].title()},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    data["headers"] = {"Authorization": f"Bearer {data['token']}"}
    return data


@pytest.fixture
def auth_headers(test_client: TestClient) -> dict:
    """Authorization headers for a freshly registered user."""
    return register_user(test_client)["headers"]
