"""Pytest configuration and shared fixtures."""

import librosa
import numpy as np
import pytest

# 24 kHz with a 400-sample hop gives exactly 60 analyser frames per second.
TEST_SR = 24000
TEST_FPS = 60
TEST_HOP = TEST_SR // TEST_FPS
TEST_FFT = 2048


def frame_time(index: int, fps: float = TEST_FPS) -> float:
    """Millisecond timestamp of frame ``index``."""
    return index * 1000.0 / fps


def to_analyser_bytes(
    db: np.ndarray,
    min_decibels: float = -100.0,
    max_decibels: float = -12.0,
) -> np.ndarray:
    """Quantize decibel magnitudes the way a browser analyser node does."""
    scaled = 255.0 * (db - min_decibels) / (max_decibels - min_decibels)
    return np.clip(scaled, 0, 255).astype(np.uint8)


@pytest.fixture
def sample_rate() -> int:
    """Default sample rate for tests."""
    return TEST_SR


@pytest.fixture
def click_track(sample_rate: int) -> tuple[np.ndarray, int]:
    """
    Generate a click track at 150 BPM.

    Returns:
        Tuple of (audio_signal, sample_rate).
    """
    duration = 4.0
    bpm = 150
    samples_per_beat = int(sample_rate * 60 / bpm)
    total_samples = int(sample_rate * duration)

    y = np.zeros(total_samples, dtype=np.float32)

    click_duration = int(sample_rate * 0.01)  # 10ms click
    for beat_start in range(0, total_samples, samples_per_beat):
        click_end = min(beat_start + click_duration, total_samples)
        click_samples = click_end - beat_start
        decay = np.exp(-np.linspace(0, 5, click_samples))
        y[beat_start:click_end] = 0.8 * decay

    return y, sample_rate


@pytest.fixture
def click_frames(click_track) -> list[np.ndarray]:
    """The click track as a list of byte-encoded analyser frames at 60 fps."""
    y, _ = click_track
    stft = np.abs(librosa.stft(y, n_fft=TEST_FFT, hop_length=TEST_HOP))
    db = librosa.amplitude_to_db(stft, ref=np.max)
    frames = to_analyser_bytes(db)
    return [frames[:, i] for i in range(frames.shape[1])]


@pytest.fixture
def byte_frame() -> np.ndarray:
    """A deterministic byte spectrum covering every byte value."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, size=TEST_FFT // 2 + 1).astype(np.uint8)


@pytest.fixture
def silent_frame() -> np.ndarray:
    """An all-zero byte spectrum."""
    return np.zeros(TEST_FFT // 2 + 1, dtype=np.uint8)
