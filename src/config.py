"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Memory service configuration. All values come from environment variables."""

    # Storage
    storage_backend: str = Field(default="sql")  # "sql" or "memory"
    database_path: Path = Field(default=Path("data/memory.db"))

    # Turso (hosted libSQL); overrides database_path when set
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Sessions
    session_backend: str = Field(default="memory")  # "memory" or "sql"

    # Embeddings (OpenAI-compatible /embeddings endpoint)
    embedding_api_url: str = Field(default="")
    embedding_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimension: int = Field(default=384)
    embedding_timeout_s: float = Field(default=30.0)
    embedding_workers: int = Field(default=2)
    embedding_queue_size: int = Field(default=256)

    # Conversations
    default_conversation_title: str = Field(default="New conversation")
    context_window_size: int = Field(default=5)
    search_limit: int = Field(default=10)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def embeddings_configured(self) -> bool:
        """True when an embedding endpoint has been set."""
        return bool(self.embedding_api_url.strip())


settings = Settings()
