"""
Buildup and drop detection module.

Classifies the current moment into a buildup lifecycle phase from
banded energy trends and beat density. Confidence rises quickly while
the buildup heuristics agree and decays slowly otherwise; the phase is
derived from that confidence and the time since the buildup began.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Callable

from pulsescope.core.ringbuffer import RingBuffer
from pulsescope.core.tempo import default_clock, finite_level, round_half_up
from pulsescope.logging_utils import log_event

BUILDUP_CONFIDENCE = 0.4
SCORE_GATE = 0.3
CONFIDENCE_GAIN = 0.1
EARLY_MS = 2000.0
MID_MS = 6000.0
BUILDUP_BEATS = 16
DENSITY_WINDOW_MS = 2000.0
BEAT_CAPACITY = 128


@dataclass(frozen=True)
class BuildupConfig:
    """Buildup detector settings."""

    short_window_ms: float = 500.0
    long_window_ms: float = 4000.0
    trend_threshold: float = 0.05
    energy_threshold: float = 0.3
    confidence_decay: float = 0.95
    bass_weight: float = 1.5
    mid_weight: float = 1.0
    high_weight: float = 0.8
    frame_ms: float = 16.0  # assumed frame period when sizing the windows
    beat_history_ms: float = 10000.0

    def __post_init__(self):
        if self.short_window_ms <= 0 or self.long_window_ms <= 0:
            raise ValueError("Window lengths must be positive")
        if self.short_window_ms >= self.long_window_ms:
            raise ValueError(
                f"short_window_ms ({self.short_window_ms}) must be below "
                f"long_window_ms ({self.long_window_ms})"
            )
        if self.frame_ms <= 0:
            raise ValueError(f"frame_ms must be positive, got {self.frame_ms}")
        if self.bass_weight + self.mid_weight + self.high_weight <= 0:
            raise ValueError("Band weights must sum to a positive value")
        object.__setattr__(self, "confidence_decay", min(max(self.confidence_decay, 0.0), 1.0))

    @property
    def short_size(self) -> int:
        return int(math.ceil(self.short_window_ms / self.frame_ms))

    @property
    def long_size(self) -> int:
        return int(math.ceil(self.long_window_ms / self.frame_ms))


@dataclass
class BuildupResult:
    """Per-frame buildup output."""

    is_buildup: bool = False
    confidence: float = 0.0
    beats_to_impact: int = -1  # rough estimate, -1 when unknown
    energy: float = 0.0
    trend: float = 0.0  # -1 to 1
    phase: str = "idle"

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class BandWindows:
    """Short and long rolling windows for one band."""

    short: RingBuffer
    long: RingBuffer

    @classmethod
    def sized(cls, config: BuildupConfig) -> "BandWindows":
        return cls(short=RingBuffer(config.short_size), long=RingBuffer(config.long_size))

    def push(self, value: float) -> None:
        self.short.push(value)
        self.long.push(value)

    def clear(self) -> None:
        self.short.clear()
        self.long.clear()


@dataclass
class BuildupState:
    """Everything a buildup detector remembers between frames."""

    overall: BandWindows
    bass: BandWindows
    mid: BandWindows
    high: BandWindows
    beat_times: RingBuffer = field(default_factory=lambda: RingBuffer(BEAT_CAPACITY))
    result: BuildupResult = field(default_factory=BuildupResult)
    start_time: float = 0.0

    @classmethod
    def initial(cls, config: BuildupConfig) -> "BuildupState":
        return cls(
            overall=BandWindows.sized(config),
            bass=BandWindows.sized(config),
            mid=BandWindows.sized(config),
            high=BandWindows.sized(config),
        )

    def bands(self) -> dict[str, BandWindows]:
        return {"overall": self.overall, "bass": self.bass, "mid": self.mid, "high": self.high}


def _count_beats_between(beat_times: RingBuffer, now: float, newer_ms: float, older_ms: float) -> int:
    """Beats whose age is in ``[newer_ms, older_ms)``."""
    if len(beat_times) == 0:
        return 0
    ages = now - beat_times.values()
    return int(((ages >= newer_ms) & (ages < older_ms)).sum())


def buildup_score(state: BuildupState, config: BuildupConfig, energy: float, now: float) -> tuple[float, float]:
    """
    Sum the buildup heuristics for the current frame.

    Returns:
        ``(score, overall_trend)``.
    """
    short_avg = state.overall.short.mean()
    long_avg = state.overall.long.mean()
    trend = state.overall.long.trend()
    bass_trend = state.bass.short.trend()

    score = 0.0
    if trend > config.trend_threshold:
        score += trend * 0.4
    if bass_trend > config.trend_threshold * 0.8:
        score += bass_trend * 0.3
    if energy > config.energy_threshold:
        score += 0.2
    if short_avg > long_avg * 1.1:
        score += 0.1

    recent_beats = _count_beats_between(state.beat_times, now, 0.0, DENSITY_WINDOW_MS)
    older_beats = _count_beats_between(state.beat_times, now, DENSITY_WINDOW_MS, 2 * DENSITY_WINDOW_MS)
    if recent_beats > older_beats * 1.2:
        score += 0.1

    return score, trend


def update_step(
    state: BuildupState,
    config: BuildupConfig,
    bass: float,
    mid: float,
    high: float,
    is_beat: bool,
    now: float,
) -> BuildupResult:
    """
    Advance the detector by one frame.

    Args:
        state: Detector state, updated in place.
        config: Detector configuration.
        bass: Bass band level (0-1).
        mid: Mid band level (0-1).
        high: High band level (0-1).
        is_beat: Whether the beat detector fired this frame.
        now: Frame time in milliseconds.

    Returns:
        BuildupResult for this frame.
    """
    bass, mid, high = finite_level(bass), finite_level(mid), finite_level(high)
    total_weight = config.bass_weight + config.mid_weight + config.high_weight
    energy = (bass * config.bass_weight + mid * config.mid_weight + high * config.high_weight) / total_weight

    state.overall.push(energy)
    state.bass.push(bass)
    state.mid.push(mid)
    state.high.push(high)

    if is_beat:
        state.beat_times.push(now)
        while len(state.beat_times) > 0 and now - state.beat_times.oldest() > config.beat_history_ms:
            state.beat_times.popleft()

    score, trend = buildup_score(state, config, energy, now)

    previous = state.result
    confidence = previous.confidence
    if score > SCORE_GATE:
        confidence = min(1.0, confidence + score * CONFIDENCE_GAIN)
    else:
        confidence *= config.confidence_decay

    is_buildup = confidence > BUILDUP_CONFIDENCE

    if is_buildup and not previous.is_buildup:
        state.start_time = now
        phase = "early"
    elif is_buildup:
        elapsed = now - state.start_time
        if elapsed < EARLY_MS:
            phase = "early"
        elif elapsed < MID_MS:
            phase = "mid"
        else:
            phase = "peak"
    elif previous.is_buildup:
        phase = "release"
    else:
        phase = "idle"

    beats_to_impact = -1
    if is_buildup and phase != "peak":
        beats_to_impact = round_half_up((1.0 - confidence) * BUILDUP_BEATS)

    if phase != previous.phase and phase != "idle":
        log_event("info", "Buildup", "Phase change", phase=phase, confidence=round(confidence, 3))

    state.result = BuildupResult(
        is_buildup=is_buildup,
        confidence=confidence,
        beats_to_impact=beats_to_impact,
        energy=energy,
        trend=trend,
        phase=phase,
    )
    return state.result


class BuildupDetector:
    """Stateful wrapper around ``update_step`` with an injectable clock."""

    def __init__(
        self,
        config: BuildupConfig | None = None,
        clock: Callable[[], float] | None = None,
        **overrides: Any,
    ):
        base = config or BuildupConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.clock = clock or default_clock
        self.state = BuildupState.initial(self.config)

    def update(
        self,
        bass: float,
        mid: float,
        high: float,
        is_beat: bool = False,
        now: float | None = None,
    ) -> BuildupResult:
        now = self.clock() if now is None else now
        return update_step(self.state, self.config, bass, mid, high, is_beat, now)

    def get_state(self) -> BuildupResult:
        return dataclasses.replace(self.state.result)

    def get_band_averages(self) -> dict[str, dict[str, float]]:
        """Short and long window averages per band."""
        return {
            name: {"short": windows.short.mean(), "long": windows.long.mean()}
            for name, windows in self.state.bands().items()
        }

    def update_config(self, **changes: Any) -> None:
        """Apply a partial update; window size changes rebuild the buffers."""
        old = self.config
        self.config = dataclasses.replace(self.config, **changes)
        if (old.short_size, old.long_size) != (self.config.short_size, self.config.long_size):
            self.reset()
        log_event("debug", "Buildup", "Configuration updated", **changes)

    def reset(self) -> None:
        self.state = BuildupState.initial(self.config)
        log_event("debug", "Buildup", "Detector reset")
