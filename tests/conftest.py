from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.services import image_hosting
from src.services.session import registry


@pytest.fixture(autouse=True)
def images_dir(tmp_path: Path) -> Iterator[Path]:
    with patch.object(image_hosting, "IMAGES_DIR", tmp_path):
        yield tmp_path


@pytest.fixture(autouse=True)
def clean_registry() -> Iterator[None]:
    yield
    registry._sessions.clear()


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
