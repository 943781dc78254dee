"""Configuration helpers for the news desk dashboard."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    search_model: str = Field(
        "gpt-5-mini", description="Web-search-grounded model for discovery and contacts."
    )
    report_model: str = Field(
        "gpt-5-mini", description="Model for URL extraction and deep-dive reports."
    )
    image_model: str = Field("gpt-image-1", description="Illustration model.")
    search_tool: str = Field(
        "web_search", description="Responses API tool type used for grounded search."
    )
    industry: str = Field(
        "bioplastics", description="Industry the discovery prompts are scoped to."
    )
    time_range_days: int = Field(30, description="Default recency window for discovery.")

    # Price table (base currency per million tokens / per search call).
    price_per_1m_input_tokens: float = 0.075
    price_per_1m_output_tokens: float = 0.30
    price_per_search_call: float = 0.035
    exchange_rate: float = Field(
        0.90, description="Base currency (USD) to display currency conversion rate."
    )
    currency: str = "CHF"

    github_api_url: str = "https://api.github.com"
    github_owner: str = ""
    github_repository: str = "bioplastic-website"
    github_base_path: str = "content/news"
    credentials_path: Path = Field(
        Path("~/.config/news_desk/credentials.json"),
        alias="NEWS_DESK_CREDENTIALS_PATH",
        description="JSON file caching the publish credential across sessions.",
    )
    request_timeout: float = Field(
        60.0, description="Timeout in seconds for GitHub requests."
    )


def get_settings() -> Settings:
    """Return a fresh settings instance (reads the environment each call)."""
    return Settings()


def require_api_key(settings: Settings | None = None) -> str:
    """Return the OpenAI key or fail with a message that says where to set it."""
    settings = settings or get_settings()
    if not settings.openai_api_key:
        raise RuntimeError(
            "OPENAI_API_KEY is required. Set it in the environment or .env file."
        )
    return settings.openai_api_key
