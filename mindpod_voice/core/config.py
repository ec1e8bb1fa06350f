"""Unified configuration for the voice assistant."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global assistant settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # Storage and logs
    data_dir: str = "~/.mindpod"
    log_dir: str | None = None
    log_rotate_mb: int = 5
    log_retention_days: int = 7
    log_level: str = "INFO"

    # Voice
    voice_lang: str = "en-US"
    voice_preferred: str | None = None
    listen_timeout_sec: float = 8.0

    # Onboarding
    onboarding_max_attempts: int = 3
    onboarding_fallback_name: str = "friend"

    # AI collaborator (OpenAI compatible endpoint, offline when base url is unset)
    ai_base_url: str | None = None
    ai_chat_endpoint: str = "/v1/chat/completions"
    ai_model: str | None = None
    ai_api_key: str | None = None
    ai_timeout_sec: float = 30.0
    ai_temperature: float = 0.7
    ai_max_output_tokens: int = 512
    ai_history_max_messages: int = 10
    ai_summary_max_chars: int = 12_000
    ai_assistant_prompt: str = (
        "You are a friendly voice assistant inside a notes and study app. "
        "Answer in one to three short spoken sentences without markdown."
    )
    ai_general_prompt: str = "You are a helpful assistant for reading and summarizing documents."

    # Audio backends
    audio_input_device: str | None = None
    audio_output_device: str | None = None
    asr_model: str = "tiny.en"
    asr_device: str = "cpu"
    asr_compute_type: str = "int8"
    vad_aggressiveness: int = 2
    vad_silence_ms: int = 800
    vad_no_speech_ms: int = 5000
    tts_models_dir: str | None = None
    tts_length_scale: float = 1.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls.json_config_settings_source,
            file_secret_settings,
        )

    @staticmethod
    def json_config_settings_source() -> dict[str, object]:
        """Load config.json at the project root when present."""
        config_path = Path(__file__).resolve().parents[2] / "config.json"
        if config_path.is_file():
            try:
                return json.loads(config_path.read_text(encoding="utf-8"))
            except ValueError:
                return {}
        return {}


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
