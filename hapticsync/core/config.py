"""Configuration settings for the audio-to-haptic sync backend."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Audio settings
    sample_rate: int = 44100  # Hz, rate every audio source must deliver
    fft_size: int = 2048  # samples per analysis frame
    hop_size: int = 512  # samples between frames (~11.6 ms at 44.1 kHz)

    # Streaming settings
    segment_duration_seconds: float = 20.0
    buffer_ahead_seconds: float = 40.0  # keep this much analyzed ahead of playback
    first_segment_timeout_seconds: float = 120.0
    http_timeout_seconds: float = 30.0

    # Sync defaults (user-tunable per session)
    sync_enabled: bool = True
    sync_sensitivity: float = 1.0  # gamma exponent, >1 lifts quiet values
    sync_min_intensity: float = 0.0
    sync_max_intensity: float = 1.0
    sync_latency_offset_ms: int = 0

    # Latency budget: device + network + decode/analysis pipeline
    pipeline_latency_ms: int = 1350

    # Haptic output
    haptic_device: str = "mock"
    mock_device_latency_ms: int = 150
    haptic_queue_size: int = 8

    # Notifications to the player/UI layer
    notification_queue_size: int = 100

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
