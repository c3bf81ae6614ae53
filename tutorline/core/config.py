"""Application configuration."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "TutorLine"

    # OpenAI (LLM, Whisper transcription, speech synthesis)
    openai_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    tts_model: str = "tts-1"
    tts_voice: str = "nova"

    # Twilio (used to fetch call recordings)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None

    # Database
    database_url: str = "sqlite+aiosqlite:///./tutorline.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    base_url: Optional[str] = None
    audio_dir: str = "audio"

    # Call flow
    recording_max_seconds: float = 60
    summary_recording_max_seconds: float = 10
    recording_grace_seconds: float = 5
    stage_timeout_seconds: float = 20
    summary_history_limit: int = 5

    # Event bus and metrics
    event_buffer_size: int = 100
    observer_queue_size: int = 256
    latency_window: int = 100
    metrics_interval_seconds: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
