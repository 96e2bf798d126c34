"""Core per-frame analysis modules."""

from pulsescope.core.spectrum import SpectrumParser, WaveParser
from pulsescope.core.tempo import BeatTempoDetector
from pulsescope.core.buildup import BuildupDetector
from pulsescope.core.reactor import AudioReactor, ReactorManager

__all__ = [
    "SpectrumParser",
    "WaveParser",
    "BeatTempoDetector",
    "BuildupDetector",
    "AudioReactor",
    "ReactorManager",
]
