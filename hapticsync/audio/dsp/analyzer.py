"""
Audio-to-haptic intensity analysis.

Haptic actuators have far less dynamic range than a speaker, so following the
raw loudness of music feels monotonous. The analyzer instead produces a
two-level signal: a flat low plateau while audio is playing, silence while it
is quiet, and a full-strength pulse on bass drops. A separate voice/high band
detector produces an accent pulse that callers may use as a secondary channel.

The analysis is a pure function of (samples, state, settings); the running
statistics live in an explicit AnalyzerState value that is copied, never
mutated in place. AudioAnalyzer wraps this for callers that want to keep one
state per session.
"""
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Tuple
import numpy as np
from hapticsync.audio.models import AnalysisResult, AnalysisStats, SyncSettings
from hapticsync.audio.dsp.spectrum import (
    BASS_BAND,
    MID_BAND,
    SUB_BASS_BAND,
    VOICE_BAND,
    band_bins,
    band_energy,
    frame_signal,
    hann_window,
    magnitude_spectra,
    to_mono,
)
from hapticsync.core.config import settings as app_settings
from hapticsync.core.logging import logger

# Rolling window sizes, in frames
ENERGY_HISTORY_SIZE = 20
DROP_HISTORY_SIZE = 60  # ~700 ms
LOUDNESS_HISTORY_SIZE = 100  # ~1.2 s
VOICE_HISTORY_SIZE = 6
ADAPTATION_FRAMES = 500  # averages converge over the first ~500 frames

# Output levels
BASE_INTENSITY = 0.25
SMOOTHED_SILENCE_LEVEL = 0.1
QUIET_LOUDNESS_LEVEL = 0.08
LOUDNESS_CEILING = 3.0
SMOOTHING_NEW_WEIGHT = 0.2

# Bass drop detector
DROP_RATIO = 2.5
DROP_BASELINE_RATIO = 1.5
LOUDNESS_JUMP_RATIO = 2.0
ENERGY_JUMP_RATIO = 2.0
DROP_REFRACTORY = 0.2
DROP_DECAY = 0.85
DROP_OUTPUT_THRESHOLD = 0.4

# Voice spike detector
VOICE_SPIKE_LEVEL = 0.90
VOICE_SPIKE_DECAY = 0.65
VOICE_SPIKE_REFRACTORY = 0.4

PULSE_FLOOR = 0.01
ENERGY_FLOOR = 0.001


@dataclass
class AnalyzerState:
    """Running statistics carried from one analyzer call to the next."""
    frame_index: int = 0
    avg_energy: float = ENERGY_FLOOR
    max_energy: float = ENERGY_FLOOR
    local_avg_energy: float = 0.0
    bass_baseline: float = ENERGY_FLOOR
    smoothed_bass: float = 0.0
    prev_bass_energy: float = 0.0
    loudness_earlier: float = math.inf
    loudness_later: float = 0.0
    drop_pulse: float = 0.0
    voice_spike: float = 0.0
    prev_voice_energy: float = 0.0
    avg_voice: float = ENERGY_FLOOR
    energy_history: Deque[float] = field(default_factory=lambda: deque(maxlen=ENERGY_HISTORY_SIZE))
    drop_history: Deque[float] = field(default_factory=lambda: deque(maxlen=DROP_HISTORY_SIZE))
    loudness_history: Deque[float] = field(default_factory=lambda: deque(maxlen=LOUDNESS_HISTORY_SIZE))
    voice_history: Deque[float] = field(default_factory=lambda: deque(maxlen=VOICE_HISTORY_SIZE))

    def copy(self) -> "AnalyzerState":
        """Independent copy, histories included."""
        return AnalyzerState(
            frame_index=self.frame_index,
            avg_energy=self.avg_energy,
            max_energy=self.max_energy,
            local_avg_energy=self.local_avg_energy,
            bass_baseline=self.bass_baseline,
            smoothed_bass=self.smoothed_bass,
            prev_bass_energy=self.prev_bass_energy,
            loudness_earlier=self.loudness_earlier,
            loudness_later=self.loudness_later,
            drop_pulse=self.drop_pulse,
            voice_spike=self.voice_spike,
            prev_voice_energy=self.prev_voice_energy,
            avg_voice=self.avg_voice,
            energy_history=deque(self.energy_history, maxlen=ENERGY_HISTORY_SIZE),
            drop_history=deque(self.drop_history, maxlen=DROP_HISTORY_SIZE),
            loudness_history=deque(self.loudness_history, maxlen=LOUDNESS_HISTORY_SIZE),
            voice_history=deque(self.voice_history, maxlen=VOICE_HISTORY_SIZE),
        )


def _update_loudness_trend(state: AnalyzerState) -> None:
    """Mean loudness of the earlier and later halves of the long window."""
    history = state.loudness_history
    if len(history) < 10:
        return
    half = len(history) // 2
    values = list(history)
    state.loudness_earlier = sum(values[:half]) / half
    state.loudness_later = sum(values[half:]) / (len(values) - half)


def _drop_window_extremes(state: AnalyzerState) -> Tuple[float, float]:
    """Minimum of the earlier half and maximum of the later half of the drop window."""
    earlier_min = math.inf
    later_max = 0.0
    for count, value in enumerate(state.drop_history, start=1):
        if count < DROP_HISTORY_SIZE // 2:
            earlier_min = min(earlier_min, value)
        else:
            later_max = max(later_max, value)
    return earlier_min, later_max


def _decay(pulse: float, rate: float) -> float:
    pulse *= rate
    return 0.0 if pulse < PULSE_FLOOR else pulse


def analyze_samples(
    samples: np.ndarray,
    state: AnalyzerState,
    sync_settings: SyncSettings,
    sample_rate: Optional[int] = None,
    fft_size: Optional[int] = None,
    hop_size: Optional[int] = None,
) -> Tuple[AnalysisResult, AnalyzerState]:
    """
    Turn PCM samples into per-frame haptic intensities.

    Args:
        samples: Mono (n,) or multichannel (n, channels) float PCM
        state: Running statistics from the previous call (not modified)
        sync_settings: Sensitivity and output clamp
        sample_rate: Sample rate in Hz (defaults to config value)
        fft_size: Frame length in samples (defaults to config value)
        hop_size: Hop in samples (defaults to config value)

    Returns:
        Tuple of (AnalysisResult, new AnalyzerState). Input shorter than one
        frame yields empty arrays and an unchanged copy of the state.
    """
    sample_rate = sample_rate or app_settings.sample_rate
    fft_size = fft_size or app_settings.fft_size
    hop_size = hop_size or app_settings.hop_size

    mono = to_mono(samples)
    new_state = state.copy()

    if len(mono) < fft_size:
        logger.warning(f"Analyzer: not enough samples ({len(mono)} < {fft_size})")
        empty = np.zeros(0, dtype=np.float32)
        return AnalysisResult(intensities=empty, accents=empty.copy(), drop_pulse=empty.copy()), new_state

    spectra = magnitude_spectra(frame_signal(mono, fft_size, hop_size), hann_window(fft_size))
    bass = band_energy(spectra, band_bins(BASS_BAND, sample_rate, fft_size)).astype(np.float64).tolist()
    sub_bass = band_energy(spectra, band_bins(SUB_BASS_BAND, sample_rate, fft_size)).astype(np.float64).tolist()
    mid = band_energy(spectra, band_bins(MID_BAND, sample_rate, fft_size)).astype(np.float64).tolist()
    voice = band_energy(spectra, band_bins(VOICE_BAND, sample_rate, fft_size)).astype(np.float64).tolist()

    n_frames = len(bass)
    intensities = np.zeros(n_frames, dtype=np.float32)
    accents = np.zeros(n_frames, dtype=np.float32)
    drop_pulse = np.zeros(n_frames, dtype=np.float32)
    stats = AnalysisStats()
    s = new_state

    for i in range(n_frames):
        s.frame_index += 1
        bass_energy = bass[i]
        total_energy = bass_energy + mid[i] * 0.5

        s.energy_history.append(total_energy)
        s.local_avg_energy = sum(s.energy_history) / len(s.energy_history)

        alpha = 1.0 / min(s.frame_index, ADAPTATION_FRAMES)
        s.avg_energy = s.avg_energy * (1 - alpha) + total_energy * alpha
        s.max_energy = max(s.max_energy * 0.9999, total_energy)
        s.bass_baseline = s.bass_baseline * (1 - alpha) + bass_energy * alpha

        normalized_loudness = total_energy / max(s.avg_energy * 0.5, ENERGY_FLOOR)
        normalized_loudness = min(normalized_loudness, LOUDNESS_CEILING) / LOUDNESS_CEILING
        s.smoothed_bass = s.smoothed_bass * (1 - SMOOTHING_NEW_WEIGHT) + normalized_loudness * SMOOTHING_NEW_WEIGHT

        base_intensity = 0.0 if s.smoothed_bass < SMOOTHED_SILENCE_LEVEL else BASE_INTENSITY

        # Beats are counted for diagnostics only
        if bass_energy > s.prev_bass_energy * 1.2 and bass_energy > s.bass_baseline * 1.2:
            stats.beats += 1
        s.prev_bass_energy = bass_energy

        s.loudness_history.append(total_energy)
        _update_loudness_trend(s)

        s.drop_history.append(sub_bass[i] + bass_energy * 0.5)
        earlier_min, later_max = _drop_window_extremes(s)

        bass_drop = (
            later_max > earlier_min * DROP_RATIO
            and later_max > s.bass_baseline * DROP_BASELINE_RATIO
            and s.drop_pulse < DROP_REFRACTORY
        )
        loudness_jump = (
            s.loudness_later > s.loudness_earlier * LOUDNESS_JUMP_RATIO
            and total_energy > s.avg_energy * ENERGY_JUMP_RATIO
            and s.drop_pulse < DROP_REFRACTORY
        )
        if bass_drop or loudness_jump:
            s.drop_pulse = 1.0
            stats.drops += 1
        else:
            s.drop_pulse = _decay(s.drop_pulse, DROP_DECAY)

        voice_energy = voice[i]
        s.voice_history.append(voice_energy)
        voice_avg = sum(s.voice_history) / len(s.voice_history)
        s.avg_voice = s.avg_voice * (1 - alpha) + voice_energy * alpha

        voice_spike = (
            voice_energy > voice_avg * 1.6
            and voice_energy > s.prev_voice_energy * 1.4
            and voice_energy > s.avg_voice
            and s.voice_spike < VOICE_SPIKE_REFRACTORY
        )
        if voice_spike:
            s.voice_spike = VOICE_SPIKE_LEVEL
            stats.spikes += 1
        else:
            s.voice_spike = _decay(s.voice_spike, VOICE_SPIKE_DECAY)
        s.prev_voice_energy = voice_energy

        if s.drop_pulse > DROP_OUTPUT_THRESHOLD:
            intensity = 1.0
        elif normalized_loudness < QUIET_LOUDNESS_LEVEL:
            intensity = 0.0
        else:
            intensity = base_intensity

        if intensity > 0 and sync_settings.sensitivity != 1.0:
            intensity = intensity ** (1.0 / sync_settings.sensitivity)
        intensity = min(max(intensity, sync_settings.min_intensity), sync_settings.max_intensity)

        intensities[i] = intensity
        accents[i] = s.voice_spike
        drop_pulse[i] = s.drop_pulse

    stats.min_intensity = float(intensities.min())
    stats.max_intensity = float(intensities.max())
    stats.mean_intensity = float(intensities.mean())

    logger.debug(
        f"Analyzer: {len(mono)} samples -> {n_frames} values | "
        f"beats={stats.beats}, drops={stats.drops}, spikes={stats.spikes} | "
        f"intensity min={stats.min_intensity:.3f} max={stats.max_intensity:.3f} mean={stats.mean_intensity:.3f}"
    )

    return AnalysisResult(intensities=intensities, accents=accents, drop_pulse=drop_pulse, stats=stats), new_state


class AudioAnalyzer:
    """Holds one AnalyzerState per session and feeds it through analyze_samples."""

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        fft_size: Optional[int] = None,
        hop_size: Optional[int] = None,
    ):
        self.sample_rate = sample_rate or app_settings.sample_rate
        self.fft_size = fft_size or app_settings.fft_size
        self.hop_size = hop_size or app_settings.hop_size
        self._state = AnalyzerState()

    @property
    def state(self) -> AnalyzerState:
        return self._state

    @state.setter
    def state(self, value: AnalyzerState) -> None:
        self._state = value

    @property
    def hop_seconds(self) -> float:
        """Duration covered by one output value."""
        return self.hop_size / self.sample_rate

    def analyze(self, samples: np.ndarray, sync_settings: SyncSettings) -> AnalysisResult:
        """Analyze the next buffer of the session and advance the state."""
        result, self._state = analyze_samples(
            samples,
            self._state,
            sync_settings,
            sample_rate=self.sample_rate,
            fft_size=self.fft_size,
            hop_size=self.hop_size,
        )
        return result

    def reset(self) -> None:
        """Forget all running statistics (new source or discontinuous seek)."""
        self._state = AnalyzerState()
