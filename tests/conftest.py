from collections.abc import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient

from peppol_converter.core.config import get_settings
from peppol_converter.main import app
from peppol_converter.services.pipeline import Pipeline

TEST_API_KEY = "test-api-key"


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("API_KEY", TEST_API_KEY)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def client(mock_settings: None) -> AsyncGenerator[AsyncClient, None]:
    app.state.pipeline = Pipeline()
    app.state.ai_enabled = False
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    del app.state.pipeline
