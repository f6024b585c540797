"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str | None = None
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "low"
    openai_store: bool = False
    openai_advice_model: str = "gpt-5.2"
    openai_realtime_model: str = "gpt-realtime"
    realtime_voice: str = "marin"
    realtime_instructions: str = (
        "You are a friendly and encouraging fitness and nutrition assistant. "
        "Keep your answers concise and positive."
    )
    storage_backend: str = "file"
    storage_dir: str = ".fit_buddy"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    voice_input_sample_rate: int = 16000
    voice_output_sample_rate: int = 24000
    voice_frame_size: int = 4096
    voice_send_queue_size: int = 64
    voice_connect_timeout_seconds: float | None = 15.0
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_storage_backend(raw: str | None) -> str:
    """Normalize the configured storage backend name."""
    if raw is None:
        return "file"
    cleaned = raw.strip().lower()
    if cleaned in {"", "file", "local"}:
        return "file"
    if cleaned == "supabase":
        return "supabase"
    raise ValueError(f"Unknown storage backend: {raw}")
