"""Unit tests for spectral helpers."""
import pytest
import numpy as np
from hapticsync.audio.dsp.spectrum import (
    BASS_BAND,
    MID_BAND,
    SUB_BASS_BAND,
    VOICE_BAND,
    band_bins,
    band_energy,
    frame_count,
    frame_signal,
    hann_window,
    magnitude_spectra,
    to_mono,
)

SAMPLE_RATE = 44100
FFT_SIZE = 2048
HOP_SIZE = 512


def test_band_bins_at_default_rate():
    """Test that band edges land on the expected FFT bins."""
    assert band_bins(BASS_BAND, SAMPLE_RATE, FFT_SIZE) == (1, 6)
    assert band_bins(SUB_BASS_BAND, SAMPLE_RATE, FFT_SIZE) == (1, 3)
    assert band_bins(MID_BAND, SAMPLE_RATE, FFT_SIZE) == (7, 50)
    assert band_bins(VOICE_BAND, SAMPLE_RATE, FFT_SIZE) == (20, 186)


def test_band_bins_never_include_dc():
    """Test that the lowest bin is always at least 1."""
    low, high = band_bins((0.0, 10.0), SAMPLE_RATE, FFT_SIZE)
    assert low == 1
    assert high >= low


def test_hann_window_shape():
    """Test that the window is symmetric and zero at both ends."""
    window = hann_window(FFT_SIZE)

    assert window.shape == (FFT_SIZE,)
    assert window[0] == pytest.approx(0.0, abs=1e-7)
    assert window[-1] == pytest.approx(0.0, abs=1e-7)
    assert np.allclose(window, window[::-1])
    assert window.max() == pytest.approx(1.0, abs=1e-3)


def test_frame_count():
    """Test frame count for full and short buffers."""
    assert frame_count(SAMPLE_RATE, FFT_SIZE, HOP_SIZE) == 83
    assert frame_count(FFT_SIZE, FFT_SIZE, HOP_SIZE) == 1
    assert frame_count(FFT_SIZE - 1, FFT_SIZE, HOP_SIZE) == 0


def test_frame_signal_hops():
    """Test that consecutive frames start one hop apart."""
    samples = np.arange(FFT_SIZE + 3 * HOP_SIZE, dtype=np.float32)
    frames = frame_signal(samples, FFT_SIZE, HOP_SIZE)

    assert frames.shape == (4, FFT_SIZE)
    assert frames[1, 0] == HOP_SIZE
    assert frames[3, -1] == len(samples) - 1


def test_frame_signal_short_input():
    """Test that input shorter than one frame yields no frames."""
    frames = frame_signal(np.zeros(100, dtype=np.float32), FFT_SIZE, HOP_SIZE)
    assert frames.shape == (0, FFT_SIZE)


def test_magnitude_spectra_peak_on_tone_bin():
    """Test that a bin-centred tone peaks on its own bin."""
    bin_index = 10
    freq = bin_index * SAMPLE_RATE / FFT_SIZE
    t = np.arange(FFT_SIZE * 2) / SAMPLE_RATE
    tone = np.sin(2 * np.pi * freq * t).astype(np.float32)

    spectra = magnitude_spectra(frame_signal(tone, FFT_SIZE, HOP_SIZE), hann_window(FFT_SIZE))

    assert spectra.shape[1] == FFT_SIZE // 2
    assert np.all(np.argmax(spectra, axis=1) == bin_index)


def test_band_energy_sums_inclusive_range():
    """Test that band energy includes both edge bins."""
    spectra = np.ones((3, 16), dtype=np.float32)
    energy = band_energy(spectra, (2, 5))
    assert np.allclose(energy, 4.0)


def test_to_mono_downmixes_channels():
    """Test that multichannel input is averaged per sample."""
    stereo = np.array([[1.0, 0.0], [0.5, 0.5], [-1.0, 1.0]], dtype=np.float32)
    mono = to_mono(stereo)

    assert mono.dtype == np.float32
    assert np.allclose(mono, [0.5, 0.5, 0.0])


def test_to_mono_rejects_3d_input():
    """Test that unexpected shapes are rejected."""
    with pytest.raises(ValueError):
        to_mono(np.zeros((2, 2, 2)))
