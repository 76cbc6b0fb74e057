"""Audio data models and structures."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import numpy as np


class SegmentState(str, Enum):
    """Lifecycle of a streamed segment."""
    PENDING = "pending"
    FETCHING = "fetching"
    DECODING = "decoding"
    ANALYZING = "analyzing"
    READY = "ready"
    FAILED = "failed"


def _number(name: str, value) -> float:
    """Accept an int or float setting, rejecting bools, strings and None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number, got {value!r}")
    if not np.isfinite(value):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return float(value)


@dataclass
class SyncSettings:
    """User-tunable settings consumed by the analyzer and the sync service."""
    enabled: bool = True
    sensitivity: float = 1.0  # gamma exponent applied as intensity ** (1 / sensitivity)
    min_intensity: float = 0.0
    max_intensity: float = 1.0
    latency_offset_ms: int = 0

    def __post_init__(self):
        """Validate settings types and ranges."""
        if not isinstance(self.enabled, bool):
            raise TypeError(f"enabled must be a boolean, got {self.enabled!r}")
        self.sensitivity = _number("sensitivity", self.sensitivity)
        self.min_intensity = _number("min_intensity", self.min_intensity)
        self.max_intensity = _number("max_intensity", self.max_intensity)
        offset = _number("latency_offset_ms", self.latency_offset_ms)
        if not offset.is_integer():
            raise ValueError(f"latency_offset_ms must be a whole number, got {self.latency_offset_ms!r}")
        self.latency_offset_ms = int(offset)

        if self.sensitivity <= 0:
            raise ValueError(f"Sensitivity must be positive, got {self.sensitivity}")
        if not 0.0 <= self.min_intensity <= self.max_intensity <= 1.0:
            raise ValueError(
                f"Expected 0 <= min_intensity <= max_intensity <= 1, "
                f"got {self.min_intensity}..{self.max_intensity}"
            )

    @classmethod
    def from_settings(cls, app_settings) -> "SyncSettings":
        """Build sync settings from the application defaults."""
        return cls(
            enabled=app_settings.sync_enabled,
            sensitivity=app_settings.sync_sensitivity,
            min_intensity=app_settings.sync_min_intensity,
            max_intensity=app_settings.sync_max_intensity,
            latency_offset_ms=app_settings.sync_latency_offset_ms,
        )


@dataclass
class AnalysisStats:
    """Counters and intensity summary for one analyzer call."""
    beats: int = 0
    drops: int = 0
    spikes: int = 0
    min_intensity: float = 0.0
    max_intensity: float = 0.0
    mean_intensity: float = 0.0


@dataclass
class AnalysisResult:
    """Per-frame output of the analyzer."""
    intensities: np.ndarray  # haptic intensity per frame, within the settings clamp
    accents: np.ndarray  # voice/high band spike pulse per frame [0, 1]
    drop_pulse: np.ndarray  # bass-drop pulse per frame [0, 1]
    stats: AnalysisStats = field(default_factory=AnalysisStats)

    @property
    def n_frames(self) -> int:
        return len(self.intensities)


@dataclass
class Segment:
    """One time-bounded unit of streamed, decoded and analyzed audio."""
    index: int
    start_time: float  # seconds, inclusive
    end_time: float  # seconds, exclusive
    hop_seconds: float
    state: SegmentState = SegmentState.PENDING
    samples: Optional[np.ndarray] = None
    intensities: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    accents: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    error: Optional[str] = None

    def __post_init__(self):
        """Validate segment bounds."""
        if self.index < 0:
            raise ValueError(f"Segment index must be >= 0, got {self.index}")
        if self.end_time < self.start_time:
            raise ValueError(f"Segment {self.index} ends before it starts: {self.start_time}..{self.end_time}")

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def n_frames(self) -> int:
        return len(self.intensities)

    @property
    def is_ready(self) -> bool:
        return self.state == SegmentState.READY

    def covers(self, time_seconds: float) -> bool:
        """Whether the time falls inside [start_time, end_time)."""
        return self.start_time <= time_seconds < self.end_time

    def frame_index_at(self, time_seconds: float) -> int:
        """
        Index of the analysis frame nearest a time.

        Frame i sits at start + i * hop; halfway between two frames rounds up.
        Times past the last frame, up to end_time, clamp to the last frame.

        Args:
            time_seconds: Absolute playback time in seconds

        Returns:
            Frame index within this segment
        """
        if self.n_frames == 0:
            raise LookupError(f"Segment {self.index} has no analysis frames")
        offset = max(0.0, time_seconds - self.start_time)
        return min(int(offset / self.hop_seconds + 0.5), self.n_frames - 1)

    def mark(self, state: SegmentState, error: Optional[str] = None) -> None:
        """Move the segment to a new lifecycle state."""
        self.state = state
        if error is not None:
            self.error = error

    def release_samples(self) -> None:
        """Drop the decoded sample buffer once it is no longer needed."""
        self.samples = None
