"""
Bass / mid / high band helpers.

Splits a normalized spectrum into three coarse bands and smooths them
over time for renderers that want gentle motion.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

BAND_NAMES = ("bass", "mid", "high")


@dataclass
class FrequencyBands:
    """Energy levels for the three coarse bands, each 0-1."""

    bass: float = 0.0
    mid: float = 0.0
    high: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {"bass": self.bass, "mid": self.mid, "high": self.high}


def calculate_frequency_bands(
    data: Sequence[float] | np.ndarray,
    bass_split: float = 0.1,
    mid_split: float = 0.5,
) -> FrequencyBands:
    """
    Average a spectrum into bass (bottom 10%), mid (next 40%) and high (rest).

    Empty bands read as 0.
    """
    data = np.asarray(data, dtype=np.float64)
    n = data.size
    if n == 0:
        return FrequencyBands()

    bass_end = int(n * bass_split)
    mid_end = int(n * mid_split)

    def _mean(segment: np.ndarray) -> float:
        return float(segment.mean()) if segment.size else 0.0

    return FrequencyBands(
        bass=_mean(data[:bass_end]),
        mid=_mean(data[bass_end:mid_end]),
        high=_mean(data[mid_end:]),
    )


def band_value(bands: FrequencyBands, selected: Iterable[str]) -> float:
    """Mean of the selected bands (e.g. ``["bass", "mid"]``), 0 when none."""
    selected = list(selected)
    unknown = [name for name in selected if name not in BAND_NAMES]
    if unknown:
        raise ValueError(f"Unknown band(s) {unknown}, expected names from {BAND_NAMES}")
    if not selected:
        return 0.0
    values = bands.as_dict()
    return sum(values[name] for name in selected) / len(selected)


class BandSmoother:
    """
    Lerps band levels towards each new frame.

    Lower factors are smoother but slower to respond; 0.1-0.2 suits most
    3D scenes.
    """

    def __init__(self, factor: float = 0.15):
        self.factor = 0.0
        self.set_factor(factor)
        self.current = FrequencyBands()

    def set_factor(self, factor: float) -> None:
        self.factor = float(np.clip(factor, 0.0, 1.0))

    def _lerp(self, current: float, target: float) -> float:
        return current + (target - current) * self.factor

    def update(self, target: FrequencyBands) -> FrequencyBands:
        self.current = FrequencyBands(
            bass=self._lerp(self.current.bass, target.bass),
            mid=self._lerp(self.current.mid, target.mid),
            high=self._lerp(self.current.high, target.high),
        )
        return self.current

    def reset(self) -> None:
        self.current = FrequencyBands()
