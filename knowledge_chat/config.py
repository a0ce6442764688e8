"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Gemini
    gemini_api_key: str = Field(...)
    gemini_model: str = "gemini-2.5-flash"

    # Embedding Settings
    embedding_model: str = "text-embedding-004"
    embedding_dimensions: int = 768

    # Ollama (OpenAI-compatible local endpoint)
    ollama_base_url: str = "http://localhost:11434/v1"
    ollama_model: str = "gemma3:4b"

    # Supabase
    supabase_url: str = Field(...)
    supabase_service_key: str = Field(...)
    documents_table: str = "documents"
    chat_history_table: str = "chat_history"
    match_function: str = "match_documents"

    # Retrieval Settings
    match_threshold: float = 0.1
    match_count: int = 5
    fallback_match_count: int = 3
    keyword_match_similarity: float = 0.5
    keyword_scan_limit: int = 5

    # Conversation Settings
    request_history_turns: int = 6
    prompt_history_turns: int = 3

    # Maintenance Settings
    embedding_batch_delay_seconds: float = 0.1
    seed_delay_seconds: float = 0.2

    # App Settings
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
