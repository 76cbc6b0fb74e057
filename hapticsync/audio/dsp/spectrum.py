"""Spectral helpers: framing, Hann window, magnitude spectra and band energies."""
import numpy as np
from typing import Tuple


# Frequency bands in Hz. Edges sit on FFT bin centres at 44.1 kHz / 2048.
BASS_BAND = (21.5, 129.2)  # smooth continuous sensation
SUB_BASS_BAND = (21.5, 64.6)  # drop detection only
MID_BAND = (150.7, 1076.7)  # general energy weighting
VOICE_BAND = (430.7, 4005.0)  # transient/spike detection


def to_mono(samples: np.ndarray) -> np.ndarray:
    """
    Downmix PCM samples to a mono float32 signal.

    Args:
        samples: Shape (n,) for mono or (n, channels) for interleaved multichannel

    Returns:
        1D float32 array
    """
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim == 1:
        return samples
    if samples.ndim == 2:
        return samples.mean(axis=1, dtype=np.float32)
    raise ValueError(f"Expected mono (n,) or multichannel (n, channels) samples, got shape {samples.shape}")


def hann_window(size: int) -> np.ndarray:
    """Symmetric Hann window: 0.5 * (1 - cos(2*pi*i / (size - 1)))."""
    return np.hanning(size).astype(np.float32)


def frame_count(n_samples: int, fft_size: int, hop_size: int) -> int:
    """Number of full analysis frames in a buffer of n_samples."""
    if n_samples < fft_size:
        return 0
    return (n_samples - fft_size) // hop_size + 1


def frame_signal(samples: np.ndarray, fft_size: int, hop_size: int) -> np.ndarray:
    """
    Split a mono signal into overlapping frames.

    Returns:
        Read-only strided view of shape (n_frames, fft_size)
    """
    n_frames = frame_count(len(samples), fft_size, hop_size)
    if n_frames == 0:
        return np.zeros((0, fft_size), dtype=np.float32)
    windows = np.lib.stride_tricks.sliding_window_view(samples, fft_size)
    return windows[::hop_size][:n_frames]


def magnitude_spectra(frames: np.ndarray, window: np.ndarray) -> np.ndarray:
    """
    Windowed FFT magnitude of every frame.

    Args:
        frames: Shape (n_frames, fft_size)
        window: Shape (fft_size,)

    Returns:
        Shape (n_frames, fft_size // 2) magnitudes (Nyquist bin dropped)
    """
    fft_size = frames.shape[1]
    spectrum = np.abs(np.fft.rfft(frames * window, axis=1))
    return spectrum[:, : fft_size // 2]


def band_bins(band: Tuple[float, float], sample_rate: int, fft_size: int) -> Tuple[int, int]:
    """
    Convert a frequency band to an inclusive FFT bin range.

    Args:
        band: (low_hz, high_hz)
        sample_rate: Sample rate in Hz
        fft_size: FFT length in samples

    Returns:
        (low_bin, high_bin), both inclusive, low_bin >= 1 so DC never counts
    """
    bin_hz = sample_rate / fft_size
    low_hz, high_hz = band
    low_bin = max(1, int(round(low_hz / bin_hz)))
    high_bin = min(fft_size // 2 - 1, int(round(high_hz / bin_hz)))
    return low_bin, max(low_bin, high_bin)


def band_energy(spectra: np.ndarray, bins: Tuple[int, int]) -> np.ndarray:
    """Sum of spectral magnitudes in an inclusive bin range, per frame."""
    low_bin, high_bin = bins
    return spectra[:, low_bin: high_bin + 1].sum(axis=1)
