from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    api_key: str
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    ai_temperature: float = 0.1
    ai_timeout_seconds: float = 60.0
    ai_prompt_text_limit: int = 5000
    ai_fallback_text_limit: int = 15000
    ai_spreadsheet_text_limit: int = 20000
    max_file_size_mb: int = 10
    log_level: str = "INFO"

    @property
    def ai_enabled(self) -> bool:
        return bool(self.gemini_api_key and self.gemini_api_key.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
