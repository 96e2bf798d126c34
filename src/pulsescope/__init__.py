"""Real-time audio feature extraction for audio-reactive visuals."""

from pulsescope.core.spectrum import SpectrumParser, WaveParser
from pulsescope.core.tempo import BeatTempoDetector
from pulsescope.core.buildup import BuildupDetector
from pulsescope.core.reactor import AudioReactor, ReactorManager, REACTOR_PRESETS
from pulsescope.core.trigger import BeatTrigger
from pulsescope.pipeline import ReactivePipeline

__version__ = "0.1.0"
__all__ = [
    "SpectrumParser",
    "WaveParser",
    "BeatTempoDetector",
    "BuildupDetector",
    "AudioReactor",
    "ReactorManager",
    "REACTOR_PRESETS",
    "BeatTrigger",
    "ReactivePipeline",
]
