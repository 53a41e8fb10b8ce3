"""
Application Configuration

Loads environment variables using pydantic-settings.
All settings can be overridden via a .env file or environment variables.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_DEFAULT_TIERS_PATH = Path(__file__).resolve().parent / "data" / "domain_tiers.json"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Generative backend
    GOOGLE_CLOUD_PROJECT: str = ""
    GOOGLE_CLOUD_LOCATION: str = "us-central1"
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_INPUT_PRICE_PER_MILLION: float = 0.15
    GEMINI_OUTPUT_PRICE_PER_MILLION: float = 0.60

    # Per-stage call parameters
    SYNTHESIS_TEMPERATURE: float = 0.3
    SYNTHESIS_MAX_OUTPUT_TOKENS: int = 65535
    ENRICHMENT_SEARCH_TEMPERATURE: float = 0.2
    ENRICHMENT_SEARCH_MAX_OUTPUT_TOKENS: int = 4096
    ENRICHMENT_FORMAT_TEMPERATURE: float = 0.2
    ENRICHMENT_FORMAT_MAX_OUTPUT_TOKENS: int = 8192
    TREND_TEMPERATURE: float = 0.2
    TREND_MAX_OUTPUT_TOKENS: int = 8192

    # Evidence
    DOMAIN_TIERS_PATH: str = str(_DEFAULT_TIERS_PATH)
    REDIRECT_TIMEOUT_SECONDS: float = 5.0
    CHROMA_PERSIST_DIR: str = "./chroma_db"
    RESEARCH_CACHE_COLLECTION: str = "research_cache"

    # Longitudinal analysis
    SESSIONS_PATH: str = "data/sessions.json"
    TREND_MIN_PRIOR_SESSIONS: int = 1
    TREND_MAX_HISTORY: int = 10

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=str(_ENV_FILE), extra="ignore")


settings = Settings()
