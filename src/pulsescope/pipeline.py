"""
Per-frame reactive analysis pipeline.

Wires the spectrum normalizer, band helpers, tempo and buildup detectors,
beat trigger and reactor manager together so a driver only has to hand
over one analyser frame per animation frame.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

import numpy as np

from pulsescope.core.bands import BandSmoother, FrequencyBands, calculate_frequency_bands
from pulsescope.core.buildup import BuildupConfig, BuildupDetector, BuildupResult
from pulsescope.core.reactor import ReactorManager
from pulsescope.core.spectrum import SpectrumConfig, SpectrumParser, WaveConfig, WaveParser
from pulsescope.core.tempo import BeatTempoDetector, TempoConfig, TempoResult, default_clock
from pulsescope.core.trigger import BeatTrigger, TriggerConfig


@dataclass
class FrameFeatures:
    """Everything the pipeline produced for one frame."""

    time: float
    spectrum: np.ndarray
    energy: float
    bands: FrequencyBands
    smoothed_bands: FrequencyBands
    tempo: TempoResult
    buildup: BuildupResult
    impact: float
    reactors: dict[str, float] = field(default_factory=dict)
    waveform: np.ndarray | None = None

    def to_dict(self, precision: int = 4) -> dict[str, Any]:
        """Flat renderer-facing frame dictionary."""

        def _round(value: float) -> float:
            return round(float(value), precision)

        frame: dict[str, Any] = {
            "time": _round(self.time),
            "is_beat": bool(self.tempo.is_beat),
            "bpm": _round(self.tempo.bpm),
            "bpm_confidence": _round(self.tempo.confidence),
            "beat_phase": _round(self.tempo.beat_phase),
            "global_energy": _round(self.energy),
            "bass": _round(self.bands.bass),
            "mid": _round(self.bands.mid),
            "high": _round(self.bands.high),
            "smooth_bass": _round(self.smoothed_bands.bass),
            "smooth_mid": _round(self.smoothed_bands.mid),
            "smooth_high": _round(self.smoothed_bands.high),
            "impact": _round(self.impact),
            "is_buildup": bool(self.buildup.is_buildup),
            "buildup_confidence": _round(self.buildup.confidence),
            "buildup_phase": self.buildup.phase,
            "beats_to_impact": int(self.buildup.beats_to_impact),
            "energy_trend": _round(self.buildup.trend),
        }
        frame.update({name: _round(value) for name, value in self.reactors.items()})
        return frame


class ReactivePipeline:
    """
    Complete frame-to-controls processing pipeline.

    Combines spectrum normalization, band extraction, tempo and buildup
    tracking and reactor mapping behind a single ``process_frame`` call.
    """

    def __init__(
        self,
        spectrum_config: SpectrumConfig | None = None,
        tempo_config: TempoConfig | None = None,
        buildup_config: BuildupConfig | None = None,
        trigger_config: TriggerConfig | None = None,
        wave_config: WaveConfig | None = None,
        output_bins: int | None = None,
        waveform_size: int = 512,
        band_smoothing: float = 0.15,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            spectrum_config: Analyser and frequency-range settings.
            tempo_config: Beat/tempo detector settings.
            buildup_config: Buildup detector settings.
            trigger_config: Beat trigger settings.
            wave_config: Waveform parser settings.
            output_bins: Resample the spectrum to this many bins (default: native).
            waveform_size: Output length for time-domain data.
            band_smoothing: Lerp factor for the smoothed bands.
            clock: Millisecond clock used when ``now`` is not supplied.
        """
        self.clock = clock or default_clock
        self.output_bins = output_bins
        self.waveform_size = waveform_size

        self.spectrum = SpectrumParser(spectrum_config)
        self.wave = WaveParser(wave_config)
        self.smoother = BandSmoother(band_smoothing)
        self.tempo = BeatTempoDetector(tempo_config, clock=self.clock)
        self.buildup = BuildupDetector(buildup_config, clock=self.clock)
        self.trigger = BeatTrigger(trigger_config, clock=self.clock)
        self.reactors = ReactorManager()

    def process_frame(
        self,
        fft: Sequence[float] | np.ndarray,
        time_data: Sequence[float] | np.ndarray | None = None,
        now: float | None = None,
    ) -> FrameFeatures:
        """
        Run one analyser frame through every stage.

        Args:
            fft: Raw magnitude frame.
            time_data: Optional time-domain buffer for the waveform output.
            now: Frame time in milliseconds (defaults to the pipeline clock).

        Returns:
            FrameFeatures for the frame. Arrays are copies.
        """
        now = self.clock() if now is None else now

        spectrum = self.spectrum.parse(fft, self.output_bins).copy()
        energy = self.spectrum.get_energy(fft)
        bands = calculate_frequency_bands(spectrum)
        smoothed = self.smoother.update(bands)

        tempo = self.tempo.detect(energy, bands.bass, now)
        buildup = self.buildup.update(bands.bass, bands.mid, bands.high, tempo.is_beat, now)
        impact = self.trigger.update(tempo.is_beat, bands.bass, now)
        reactors = self.reactors.process_all(spectrum)

        waveform = None
        if time_data is not None:
            waveform = self.wave.parse(time_data, self.waveform_size).copy()

        return FrameFeatures(
            time=now,
            spectrum=spectrum,
            energy=energy,
            bands=bands,
            smoothed_bands=smoothed,
            tempo=tempo,
            buildup=buildup,
            impact=impact,
            reactors=reactors,
            waveform=waveform,
        )

    def process_frames(
        self,
        frames: Iterable[Sequence[float] | np.ndarray],
        fps: float = 60.0,
        start_time: float = 0.0,
    ) -> list[dict[str, Any]]:
        """
        Replay a sequence of analyser frames at a fixed frame rate.

        Convenience method for offline runs and tests; frame ``i`` is
        stamped ``start_time + i * 1000 / fps`` milliseconds.
        """
        return [
            self.process_frame(fft, now=start_time + i * 1000.0 / fps).to_dict()
            for i, fft in enumerate(frames)
        ]

    def reset(self) -> None:
        """Clear all per-frame state; reactor configurations are kept."""
        self.spectrum.reset()
        self.wave.reset()
        self.smoother.reset()
        self.tempo.reset()
        self.buildup.reset()
        self.trigger.reset()
        self.reactors.reset_all()
