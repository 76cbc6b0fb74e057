"""
Audio sources: the fetch + decode step in front of the analyzer.

Container demuxing and resampling are not done here. A source hands out raw
float32 PCM at a fixed sample rate for a requested time range; anything that
needs a real decoder sits behind a URL that serves such PCM (for example a
decode proxy) and is read with RawPcmHttpSource.
"""
import asyncio
from typing import Optional, Protocol
from urllib.parse import parse_qs, urlparse
import numpy as np
import requests
from hapticsync.audio.ingestion import (
    BYTES_PER_SAMPLE,
    pcm_bytes_to_samples,
    validate_pcm_payload,
)
from hapticsync.core.config import settings
from hapticsync.core.logging import logger


class AudioSource(Protocol):
    """Gives out N seconds of float PCM at a fixed rate starting at time T."""

    url: str
    sample_rate: int
    duration: Optional[float]  # None while unknown

    async def fetch(self, start_time: float, duration: float) -> bytes:
        ...

    def decode(self, payload: bytes) -> np.ndarray:
        ...


class InMemorySource:
    """Source backed by a PCM buffer already in memory."""

    def __init__(self, samples: np.ndarray, sample_rate: Optional[int] = None, url: str = "memory://buffer"):
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim not in (1, 2):
            raise ValueError(f"Expected (n,) or (n, channels) samples, got shape {samples.shape}")
        self.samples = samples
        self.channels = 1 if samples.ndim == 1 else samples.shape[1]
        self.sample_rate = sample_rate or settings.sample_rate
        self.url = url
        self.duration: Optional[float] = len(samples) / self.sample_rate

    async def fetch(self, start_time: float, duration: float) -> bytes:
        start = max(0, int(round(start_time * self.sample_rate)))
        stop = min(len(self.samples), start + int(round(duration * self.sample_rate)))
        return self.samples[start:stop].astype("<f4").tobytes()

    def decode(self, payload: bytes) -> np.ndarray:
        if not payload:
            return np.zeros(0, dtype=np.float32)
        if not validate_pcm_payload(payload, self.channels):
            raise ValueError(f"Malformed PCM payload of {len(payload)} bytes")
        return pcm_bytes_to_samples(payload, self.channels)


class SyntheticSource:
    """
    Generated test signal addressed by a synthetic:// URL.

    Query parameters:
        pattern: "drop" (silence, then a bass tone, repeating every period),
                 "tone" (constant tone) or "silence"
        seconds: total length (default 120)
        freq: tone frequency in Hz (default 50)
        quiet: silent lead-in per period for "drop" (default 1)
        period: cycle length for "drop" (default 20)
        amplitude: tone amplitude (default 0.8)
    """

    def __init__(self, url: str, sample_rate: Optional[int] = None):
        self.url = url
        self.sample_rate = sample_rate or settings.sample_rate
        query = parse_qs(urlparse(url).query)

        def param(name: str, default: float) -> float:
            values = query.get(name)
            return float(values[0]) if values else default

        self.pattern = (query.get("pattern") or ["drop"])[0]
        if self.pattern not in ("drop", "tone", "silence"):
            raise ValueError(f"Unknown synthetic pattern: {self.pattern}")
        self.duration: Optional[float] = param("seconds", 120.0)
        self.freq = param("freq", 50.0)
        self.quiet = param("quiet", 1.0)
        self.period = param("period", 20.0)
        self.amplitude = param("amplitude", 0.8)

    def render(self, start_time: float, duration: float) -> np.ndarray:
        """Samples for [start_time, start_time + duration), clipped to the signal length."""
        end_time = min(start_time + duration, self.duration)
        n = max(0, int(round((end_time - start_time) * self.sample_rate)))
        t = start_time + np.arange(n, dtype=np.float64) / self.sample_rate

        if self.pattern == "silence":
            return np.zeros(n, dtype=np.float32)

        signal = self.amplitude * np.sin(2 * np.pi * self.freq * t)
        if self.pattern == "drop":
            signal[np.mod(t, self.period) < self.quiet] = 0.0
        return signal.astype(np.float32)

    async def fetch(self, start_time: float, duration: float) -> bytes:
        return self.render(start_time, duration).astype("<f4").tobytes()

    def decode(self, payload: bytes) -> np.ndarray:
        if not payload:
            return np.zeros(0, dtype=np.float32)
        return pcm_bytes_to_samples(payload)


class RawPcmHttpSource:
    """Range-requests raw little-endian float32 PCM over HTTP."""

    def __init__(
        self,
        url: str,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.sample_rate = sample_rate or settings.sample_rate
        self.channels = channels
        self.timeout = timeout or settings.http_timeout_seconds
        self.duration: Optional[float] = None
        self._session = session or requests.Session()

    def _byte_range(self, start_time: float, duration: float) -> tuple[int, int]:
        frame_bytes = BYTES_PER_SAMPLE * self.channels
        first = int(round(start_time * self.sample_rate)) * frame_bytes
        last = first + int(round(duration * self.sample_rate)) * frame_bytes - 1
        return first, last

    def _learn_duration(self, response: requests.Response) -> None:
        total_bytes = None
        content_range = response.headers.get("Content-Range")
        if content_range and "/" in content_range:
            total = content_range.rsplit("/", 1)[1]
            if total.isdigit():
                total_bytes = int(total)
        elif response.status_code == 200 and "Content-Length" in response.headers:
            total_bytes = int(response.headers["Content-Length"])

        if total_bytes is not None:
            self.duration = total_bytes / (BYTES_PER_SAMPLE * self.channels * self.sample_rate)

    def _get(self, start_time: float, duration: float) -> bytes:
        first, last = self._byte_range(start_time, duration)
        response = self._session.get(
            self.url,
            headers={"Range": f"bytes={first}-{last}"},
            timeout=self.timeout,
        )
        if response.status_code == 416:
            # Range starts past the end of the resource
            return b""
        response.raise_for_status()
        self._learn_duration(response)

        if response.status_code == 200:
            # Server ignored the range header
            return response.content[first: last + 1]
        return response.content

    async def fetch(self, start_time: float, duration: float) -> bytes:
        return await asyncio.to_thread(self._get, start_time, duration)

    def decode(self, payload: bytes) -> np.ndarray:
        if not payload:
            return np.zeros(0, dtype=np.float32)
        if not validate_pcm_payload(payload, self.channels):
            raise ValueError(f"Malformed PCM payload of {len(payload)} bytes from {self.url}")
        return pcm_bytes_to_samples(payload, self.channels)


def create_source(url: str) -> AudioSource:
    """
    Pick a source implementation for a URL.

    Args:
        url: Media URL reported by the player

    Returns:
        AudioSource for the URL
    """
    scheme = urlparse(url).scheme
    if scheme == "synthetic":
        return SyntheticSource(url)
    if scheme in ("http", "https"):
        return RawPcmHttpSource(url)
    logger.error(f"No audio source for URL scheme '{scheme}': {url}")
    raise ValueError(f"Unsupported source URL: {url}")
