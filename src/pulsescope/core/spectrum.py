"""
Spectrum and waveform normalization module.

Turns raw analyser frames (byte-encoded magnitudes or time-domain samples)
into fixed-length, 0-1 normalized, temporally smoothed vectors that the
rest of the pipeline and the renderers consume every frame.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import librosa
import numpy as np

from pulsescope.logging_utils import log_event

SPECTRUM_ENCODINGS = ("byte", "linear")

# Changing any of these invalidates the cached bin range.
_BIN_RANGE_FIELDS = ("fft_size", "sample_rate", "min_frequency", "max_frequency")


@dataclass(frozen=True)
class SpectrumConfig:
    """Analyser and frequency-range settings for a SpectrumParser."""

    fft_size: int = 2048
    sample_rate: int = 44100
    smoothing: float = 0.5  # 0 = none, towards 1 = heavy
    min_decibels: float = -100.0
    max_decibels: float = -12.0
    min_frequency: float = 20.0
    max_frequency: float = 6000.0
    encoding: str = "byte"  # "byte" (0-255) or "linear" (already 0-1)

    def __post_init__(self):
        if self.fft_size <= 0:
            raise ValueError(f"fft_size must be positive, got {self.fft_size}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.min_frequency < 0:
            raise ValueError(f"min_frequency must be >= 0, got {self.min_frequency}")
        if self.min_frequency >= self.max_frequency:
            raise ValueError(
                f"min_frequency ({self.min_frequency}) must be below "
                f"max_frequency ({self.max_frequency})"
            )
        if self.max_frequency > self.nyquist:
            raise ValueError(
                f"max_frequency ({self.max_frequency}) exceeds Nyquist ({self.nyquist})"
            )
        if self.min_decibels >= self.max_decibels:
            raise ValueError(
                f"min_decibels ({self.min_decibels}) must be below "
                f"max_decibels ({self.max_decibels})"
            )
        if self.encoding not in SPECTRUM_ENCODINGS:
            raise ValueError(
                f"Unknown encoding {self.encoding!r}, expected one of {SPECTRUM_ENCODINGS}"
            )
        object.__setattr__(self, "smoothing", _clamp_smoothing(self.smoothing))

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2

    @property
    def bin_width(self) -> float:
        """Hz covered by a single FFT bin."""
        return self.sample_rate / self.fft_size


@dataclass(frozen=True)
class BinRange:
    """Source bins selected by the configured frequency range."""

    start_bin: int
    end_bin: int

    @property
    def total_bins(self) -> int:
        return self.end_bin - self.start_bin

    @classmethod
    def from_config(cls, config: SpectrumConfig) -> "BinRange":
        return cls(
            start_bin=int(math.floor(config.min_frequency / config.bin_width)),
            end_bin=int(math.floor(config.max_frequency / config.bin_width)),
        )


@dataclass
class SmoothingState:
    """Per-output-bin buffers owned by a single parser."""

    output: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    previous: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))

    def ensure_size(self, size: int) -> None:
        """Resize (and zero) the buffers when the output size changes."""
        if len(self.output) != size:
            self.output = np.zeros(size, dtype=np.float32)
            self.previous = np.zeros(size, dtype=np.float32)

    def smooth(self, coefficient: float) -> None:
        """Exponential moving average of ``output`` against the previous frame."""
        if coefficient <= 0:
            return
        self.output *= 1.0 - coefficient
        self.output += self.previous * coefficient
        self.previous[:] = self.output

    def reset(self) -> None:
        self.output.fill(0.0)
        self.previous.fill(0.0)


def _clamp_smoothing(value: float) -> float:
    # A coefficient of exactly 1 would freeze the output forever.
    return float(min(max(value, 0.0), 0.999))


def _normalize(values: np.ndarray, lo: float, hi: float) -> np.ndarray:
    return np.clip((values - lo) / (hi - lo), 0.0, 1.0)


def byte_to_level(raw: np.ndarray | float, config: SpectrumConfig) -> np.ndarray:
    """
    Convert analyser byte magnitudes (0-255) to a 0-1 perceptual level.

    The byte is mapped onto the decibel floor, converted to linear
    magnitude and normalized against the magnitudes of the configured
    decibel floor and ceiling.
    """
    db = config.min_decibels * (1.0 - np.asarray(raw, dtype=np.float64) / 256.0)
    magnitude = librosa.db_to_amplitude(db)
    lo = librosa.db_to_amplitude(config.min_decibels)
    hi = librosa.db_to_amplitude(config.max_decibels)
    return _normalize(magnitude, lo, hi)


def finite_frame(fft: Sequence[float] | np.ndarray, config: SpectrumConfig) -> np.ndarray:
    """Raw frame as float64; NaN reads as silence, infinities pin to the encoding's range."""
    ceiling = 1.0 if config.encoding == "linear" else 255.0
    return np.nan_to_num(np.asarray(fft, dtype=np.float64), nan=0.0, posinf=ceiling, neginf=0.0)


def convert_bins(raw: np.ndarray, config: SpectrumConfig) -> np.ndarray:
    """Per-bin conversion according to the configured encoding."""
    if config.encoding == "linear":
        return np.clip(np.asarray(raw, dtype=np.float64), 0.0, 1.0)
    return byte_to_level(raw, config)


def parse_spectrum(
    state: SmoothingState,
    config: SpectrumConfig,
    bin_range: BinRange,
    fft: Sequence[float] | np.ndarray,
    bins: int | None = None,
) -> np.ndarray:
    """
    Select, convert, resample and smooth one magnitude frame into ``state``.

    Args:
        state: Smoothing buffers, updated in place.
        config: Parser configuration.
        bin_range: Cached source bin range for ``config``.
        fft: Raw magnitude frame.
        bins: Target output size (defaults to the source bin count).

    Returns:
        ``state.output``.
    """
    start_bin, end_bin, total_bins = bin_range.start_bin, bin_range.end_bin, bin_range.total_bins
    size = bins or total_bins
    state.ensure_size(max(size, 0))

    fft = finite_frame(fft, config)
    if fft.size == 0 or total_bins <= 0 or size <= 0:
        log_event("debug", "Spectrum", "Skipping degenerate frame", frame_len=fft.size, total_bins=total_bins)
        return state.output

    # Bins beyond the end of a short frame read as silence.
    source = np.zeros(total_bins, dtype=np.float64)
    available = max(0, min(end_bin, fft.size) - start_bin)
    source[:available] = fft[start_bin:start_bin + available]

    if size == total_bins:
        state.output[:] = convert_bins(source, config)
    elif size < total_bins:
        # Compression keeps the peak of each source span.
        step = total_bins / size
        peaks = np.zeros(size, dtype=np.float64)
        for i in range(size):
            lo = int(math.floor(i * step))
            hi = int(math.floor((i + 1) * step))
            if hi > lo:
                peaks[i] = max(0.0, float(source[lo:hi].max()))
        state.output[:] = convert_bins(peaks, config)
    else:
        # Expansion replicates each source bin over its span of output slots.
        step = size / total_bins
        levels = convert_bins(source, config)
        for j in range(total_bins):
            lo = int(math.floor(j * step))
            hi = min(int(math.floor((j + 1) * step)), size)
            state.output[lo:hi] = levels[j]

    state.smooth(config.smoothing)
    return state.output


class SpectrumParser:
    """
    Normalizes analyser magnitude frames over a frequency range of interest.

    The returned array is owned by the parser and overwritten by the next
    call to ``parse``; copy it if you need to keep a frame.
    """

    def __init__(self, config: SpectrumConfig | None = None, **overrides: Any):
        base = config or SpectrumConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.bin_range = BinRange.from_config(self.config)
        self.state = SmoothingState()

    def update_config(self, **changes: Any) -> None:
        """Apply a partial configuration update, re-deriving bins only when needed."""
        self.config = dataclasses.replace(self.config, **changes)
        if any(name in changes for name in _BIN_RANGE_FIELDS):
            self.bin_range = BinRange.from_config(self.config)
        log_event("debug", "Spectrum", "Configuration updated", **changes)

    def parse(self, fft: Sequence[float] | np.ndarray, bins: int | None = None) -> np.ndarray:
        """Parse one frame; see ``parse_spectrum``."""
        return parse_spectrum(self.state, self.config, self.bin_range, fft, bins)

    def get_energy(self, fft: Sequence[float] | np.ndarray) -> float:
        """Unweighted mean of the converted values across the configured bin range."""
        total_bins = self.bin_range.total_bins
        fft = finite_frame(fft, self.config)
        if total_bins <= 0 or fft.size == 0:
            return 0.0

        start_bin = self.bin_range.start_bin
        end_bin = min(self.bin_range.end_bin, fft.size)
        if end_bin <= start_bin:
            return 0.0
        levels = convert_bins(fft[start_bin:end_bin], self.config)
        return float(levels.sum() / total_bins)

    def reset(self) -> None:
        self.state.reset()

    def get_config(self) -> SpectrumConfig:
        return self.config

    def get_bin_info(self) -> dict[str, int]:
        return {
            "start_bin": self.bin_range.start_bin,
            "end_bin": self.bin_range.end_bin,
            "total_bins": self.bin_range.total_bins,
        }


@dataclass(frozen=True)
class WaveConfig:
    """Settings for a WaveParser."""

    smoothing: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "smoothing", _clamp_smoothing(self.smoothing))


def parse_waveform(
    state: SmoothingState,
    config: WaveConfig,
    data: Sequence[float] | np.ndarray,
    size: int,
) -> np.ndarray:
    """
    Normalize a time-domain buffer to 0-1 and resample it to ``size`` points.

    Byte data (0-255) is detected from an integer dtype or a first sample
    above 1; anything else is treated as signed float samples in [-1, 1].
    """
    state.ensure_size(max(size, 0))
    data = np.asarray(data)
    if data.size == 0 or size <= 0:
        return state.output

    first = float(data.flat[0])
    is_byte = data.dtype == np.uint8 or (math.isfinite(first) and first > 1)
    step = data.size / size
    idx = np.floor(np.arange(size) * step).astype(np.intp)
    np.minimum(idx, data.size - 1, out=idx)
    raw = data.reshape(-1)[idx].astype(np.float64)

    # Unreadable samples sit at the centre line.
    if is_byte:
        raw = np.nan_to_num(raw, nan=128.0, posinf=255.0, neginf=0.0)
        state.output[:] = _normalize(raw, 0.0, 255.0)
    else:
        raw = np.nan_to_num(raw, nan=0.0, posinf=1.0, neginf=-1.0)
        state.output[:] = _normalize(raw, -1.0, 1.0)

    state.smooth(config.smoothing)
    return state.output


class WaveParser:
    """Normalizes time-domain waveform buffers for sound-wave displays."""

    def __init__(self, config: WaveConfig | None = None, **overrides: Any):
        base = config or WaveConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.state = SmoothingState()

    def update_config(self, **changes: Any) -> None:
        self.config = dataclasses.replace(self.config, **changes)

    def parse(self, data: Sequence[float] | np.ndarray, size: int) -> np.ndarray:
        return parse_waveform(self.state, self.config, data, size)

    def reset(self) -> None:
        self.state.reset()
