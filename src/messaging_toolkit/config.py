"""
Runtime configuration.

'Settings' collects every tunable constant of the message store and the AI
pipeline. Values come from 'MESSAGING_*' environment variables (or a '.env'
file) and fall back to the defaults below. Components take the relevant value
as a constructor argument, so tests and callers can override a single
instance without touching the environment.

Secrets (API keys) are not part of 'Settings'; they are loaded on demand with
'get_secret' so that a missing key only fails the backend that needs it.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ARCHIVE_THRESHOLD = 50
DEFAULT_SIMILARITY_THRESHOLD = 0.75
DEFAULT_TOP_K = 5
MAX_TOP_K = 20
DEFAULT_TYPING_TTL_SECONDS = 5.0
EMBEDDING_TEXT_MAX_CHARS = 1000
MESSAGE_TEXT_MAX_CHARS = 10000

SUPPORTED_LANGUAGES: dict[str, str] = {
    "en": "English",
    "zh": "Chinese",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ja": "Japanese",
    "ko": "Korean",
    "pt": "Portuguese",
    "ru": "Russian",
    "ar": "Arabic",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MESSAGING_", env_file=".env", extra="ignore")

    # Live window / archival
    archive_threshold: int = Field(default=DEFAULT_ARCHIVE_THRESHOLD, gt=0)
    typing_ttl_seconds: float = Field(default=DEFAULT_TYPING_TTL_SECONDS, gt=0)
    typing_sweep_interval_seconds: float = Field(default=1.0, gt=0)
    message_text_max_chars: int = MESSAGE_TEXT_MAX_CHARS

    # Retrieval
    similarity_threshold: float = Field(default=DEFAULT_SIMILARITY_THRESHOLD, ge=0.0, le=1.0)
    default_top_k: int = Field(default=DEFAULT_TOP_K, gt=0, le=MAX_TOP_K)
    embedding_text_max_chars: int = EMBEDDING_TEXT_MAX_CHARS
    embedding_dimensions: int = 1536

    # Models
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    llm_temperature: float = 0.3
    insight_temperature: float = 0.7
    llm_max_tokens: int = 1000
    insight_max_tokens: int = 500
    model_timeout_seconds: float = Field(default=30.0, gt=0)

    # Translation cache and quotas
    translation_cache_ttl_seconds: float = 30 * 24 * 60 * 60
    translation_per_minute: int = 10
    embedding_per_minute: int = 20
    insights_per_minute: int = 5
    rate_limit_window_seconds: float = 60.0

    # Vector backend
    vector_backend: Literal["memory", "chromadb"] = "memory"
    chroma_path: str = "data/messages_vs.db"
    chroma_collection: str = "swift-send-messages"

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_secret(name: str) -> str:
    """Load a secret from a mounted secret file or an environment variable.

    Checks '/secrets/<name>' first, then the '<name>' environment variable.
    Raises ValueError if neither is available.
    """
    secret_file = Path(f"/secrets/{name}")
    if secret_file.exists():
        return secret_file.read_text().strip()
    key = os.environ.get(name, "")
    if not key:
        raise ValueError(
            f"{name} not found. Either:\n"
            f"  - Mount it as a secret file at /secrets/{name}, or\n"
            f"  - Set the {name} environment variable."
        )
    return key
