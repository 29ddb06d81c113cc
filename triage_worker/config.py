from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Values may be provided via environment variables (``WORKER_`` prefix).
    API keys for hosted categorizers are read from ``OPENAI_API_KEY`` and
    ``GROQ_API_KEY`` directly by the categorizer.
    """

    model_config = SettingsConfigDict(env_prefix="WORKER_", case_sensitive=False)

    # HTTP
    cors_allow_origins: str = Field("*", description="Comma-separated origins")
    host: str = "127.0.0.1"
    port: int = 3000

    # Paths (relative ones resolve against data_dir)
    data_dir: str = Field(".", description="Base directory for tmp/outputs/feedback")
    tmp_dir: str = Field("tmp", description="Working directory for uploaded audio")
    outputs_dir: str = Field("outputs", description="Exported documents")
    feedback_dir: str = Field("feedback", description="Feedback records")

    # Upload
    max_upload_mb: int = Field(50, ge=1)

    # Transcription
    converter: str = Field("ffmpeg", description="ffmpeg|soundfile")
    ffmpeg_bin: str = "ffmpeg"
    recognizer: str = Field("faster-whisper", description="faster-whisper|whisper-cli")
    whisper_model: str = Field("base", description="e.g. tiny|base|small|medium|large-v2")
    whisper_device: str = Field("cpu", description="cpu|cuda|auto")
    whisper_compute_type: str = "int8"
    language: str = "en"
    transcribe_timeout_s: float = Field(300.0, gt=0)

    # Categorization
    categorizer: str = Field("auto", description="auto|ollama|openai|groq|off")
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:3b"
    openai_model: str = "gpt-4o-mini"
    groq_model: str = "llama-3.1-70b-versatile"
    categorize_timeout_s: float = Field(60.0, gt=0)
    categorize_max_concurrency: int = Field(0, ge=0, description="0 disables the limiter")

    # Sessions
    max_sessions: int = Field(256, ge=1)

    log_level: str = "INFO"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def load_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
