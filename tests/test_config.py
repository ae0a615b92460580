import pytest

from peppol_converter.core.config import Settings, get_settings


def test_settings_defaults() -> None:
    settings = Settings(api_key="k")

    assert settings.gemini_model == "gemini-2.5-flash"
    assert settings.max_file_size_mb == 10
    assert settings.ai_prompt_text_limit == 5000
    assert settings.ai_fallback_text_limit == 15000
    assert settings.ai_spreadsheet_text_limit == 20000


@pytest.mark.parametrize(
    ("gemini_api_key", "enabled"),
    [(None, False), ("", False), ("   ", False), ("secret", True)],
)
def test_ai_enabled_follows_gemini_api_key(gemini_api_key: str | None, enabled: bool) -> None:
    assert Settings(api_key="k", gemini_api_key=gemini_api_key).ai_enabled is enabled


def test_get_settings_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_KEY", "from-env")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "5")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.api_key == "from-env"
        assert settings.gemini_model == "gemini-test"
        assert settings.max_file_size_mb == 5
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
