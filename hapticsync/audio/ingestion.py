"""Helper functions for classifying sources and converting incoming PCM data."""
import numpy as np
from typing import Optional
from urllib.parse import urlparse
from hapticsync.core.logging import logger

MEDIA_EXTENSIONS = (
    ".mp4", ".m4v", ".webm", ".mkv", ".mov", ".avi", ".wmv", ".flv", ".m3u8", ".mpd",
    ".mp3", ".m4a", ".aac", ".ogg", ".opus", ".wav", ".flac", ".pcm", ".f32",
)
MEDIA_PATH_HINTS = ("/video", "/videos/", "/watch", "/embed/", "/media/", "/stream")
MEDIA_SCHEMES = ("http", "https", "synthetic")

BYTES_PER_SAMPLE = 4  # float32


def is_likely_media_url(url: Optional[str]) -> bool:
    """
    Default URL classifier: does this URL look like it carries audio/video?

    Args:
        url: URL reported by the player

    Returns:
        True if the URL should start a sync session
    """
    if not url:
        return False

    parsed = urlparse(url.strip())
    if parsed.scheme not in MEDIA_SCHEMES:
        return False
    if parsed.scheme == "synthetic":
        return True
    if not parsed.netloc:
        return False

    path = parsed.path.lower()
    if path.endswith(MEDIA_EXTENSIONS):
        return True
    return any(hint in path for hint in MEDIA_PATH_HINTS)


def validate_pcm_payload(data: bytes, channels: int = 1) -> bool:
    """
    Validate a raw float32 PCM payload.

    Args:
        data: Raw audio bytes
        channels: Interleaved channel count

    Returns:
        True if valid, False otherwise
    """
    if len(data) == 0:
        logger.warning("Received empty audio data")
        return False

    frame_bytes = BYTES_PER_SAMPLE * channels
    if len(data) % frame_bytes != 0:
        logger.warning(f"Audio data size {len(data)} is not a multiple of {frame_bytes} bytes")
        return False

    return True


def pcm_bytes_to_samples(data: bytes, channels: int = 1) -> np.ndarray:
    """
    Convert raw little-endian float32 PCM bytes to samples.

    Args:
        data: Raw PCM bytes
        channels: Interleaved channel count

    Returns:
        Shape (n,) for mono, (n, channels) otherwise
    """
    pcm_array = np.frombuffer(data, dtype="<f4").astype(np.float32)

    if channels > 1:
        pcm_array = pcm_array.reshape(-1, channels)

    return pcm_array
