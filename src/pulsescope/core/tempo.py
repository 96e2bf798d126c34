"""
Beat and tempo detection module.

Detects beat onsets from a per-frame bass/energy feed and maintains a
tempo estimate from an exponentially decaying histogram of inter-onset
intervals. Tempo changes are committed only after the candidate has been
stable for several consecutive re-estimations, which keeps the BPM from
flickering on noisy input.

All times are in milliseconds and are supplied by the caller (or by the
detector's injected clock), so a run can be replayed deterministically.
"""

import dataclasses
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np

from pulsescope.core.ringbuffer import RingBuffer
from pulsescope.logging_utils import log_event

DEFAULT_BPM = 120.0

# Onset detection
ENERGY_WINDOW_FRAMES = 43  # ~0.7 s at 60 fps
BASS_WEIGHT = 0.7
MIN_ONSET_INTERVAL_MS = 180.0  # caps detectable tempo at ~300 BPM
ABOVE_BASELINE_RATIO = 1.15

# Tempo estimation
HISTOGRAM_FLOOR = 0.1
TOP_CANDIDATES = 5
DOUBLE_SUPPORT_RATIO = 0.3
HALF_SUPPORT_RATIO = 0.5
CANDIDATE_HISTORY = 10
STABLE_DEVIATION_BPM = 5.0
COMMIT_DEADBAND_BPM = 2.0
MIN_ONSETS_FOR_ESTIMATE = 4

# Tap tempo
TAP_INTERVALS = 8
TAP_CONFIDENCE = 0.9

ONSET_CAPACITY = 128


def default_clock() -> float:
    """Monotonic wall clock in milliseconds."""
    return time.monotonic() * 1000.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up."""
    return int(math.floor(value + 0.5))


def finite_level(value: float) -> float:
    """A 0-1 level with NaN read as silence and infinities pinned to the range."""
    return float(np.nan_to_num(value, nan=0.0, posinf=1.0, neginf=0.0))


@dataclass(frozen=True)
class TempoConfig:
    """Tempo detector settings."""

    min_bpm: float = 60.0
    max_bpm: float = 200.0
    beat_threshold: float = 0.15
    histogram_decay: float = 0.85  # multiplier applied to every bucket per onset
    history_ms: float = 8000.0
    stability_frames: int = 15  # stable re-estimations required before committing

    def __post_init__(self):
        if self.min_bpm <= 0:
            raise ValueError(f"min_bpm must be positive, got {self.min_bpm}")
        if self.min_bpm >= self.max_bpm:
            raise ValueError(
                f"min_bpm ({self.min_bpm}) must be below max_bpm ({self.max_bpm})"
            )
        if self.stability_frames < 1:
            raise ValueError(f"stability_frames must be >= 1, got {self.stability_frames}")
        if self.history_ms <= 0:
            raise ValueError(f"history_ms must be positive, got {self.history_ms}")
        object.__setattr__(self, "histogram_decay", float(np.clip(self.histogram_decay, 0.0, 0.999)))

    def clamp_bpm(self, bpm: float) -> float:
        return float(min(max(bpm, self.min_bpm), self.max_bpm))


@dataclass
class TempoResult:
    """Per-frame tempo output."""

    bpm: float
    confidence: float
    last_beat_time: float | None
    beat_phase: float  # 0-1 position within the current beat
    is_beat: bool

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class TempoState:
    """Everything a tempo detector remembers between frames."""

    onset_times: RingBuffer = field(default_factory=lambda: RingBuffer(ONSET_CAPACITY))
    histogram: dict[int, float] = field(default_factory=dict)
    bpm: float = DEFAULT_BPM
    confidence: float = 0.0
    last_onset_time: float | None = None
    beat_phase: float = 0.0
    candidates: RingBuffer = field(default_factory=lambda: RingBuffer(CANDIDATE_HISTORY))
    stable_count: int = 0
    previous_level: float = 0.0
    energy_history: RingBuffer = field(default_factory=lambda: RingBuffer(ENERGY_WINDOW_FRAMES))
    baseline: float = 0.0

    @classmethod
    def initial(cls, config: TempoConfig) -> "TempoState":
        return cls(bpm=config.clamp_bpm(DEFAULT_BPM))


def detect_onset(
    state: TempoState,
    config: TempoConfig,
    energy: float,
    bass: float,
    now: float,
) -> bool:
    """
    Rising-edge onset test against an adaptive baseline.

    Fires when the bass-weighted level jumps by more than the adaptive
    threshold, sits above the recent average, and the refractory period
    since the previous onset has elapsed.
    """
    level = bass * BASS_WEIGHT + energy * (1.0 - BASS_WEIGHT)

    state.energy_history.push(level)
    state.baseline = state.energy_history.mean()

    rise = level - state.previous_level
    state.previous_level = level

    threshold = max(config.beat_threshold * 0.5, state.baseline * 0.2)
    if rise <= threshold or level <= state.baseline * ABOVE_BASELINE_RATIO:
        return False

    last = state.last_onset_time
    return last is None or now - last > MIN_ONSET_INTERVAL_MS


def add_interval(state: TempoState, config: TempoConfig, interval_ms: float) -> None:
    """Vote for the BPM implied by one inter-onset interval."""
    if interval_ms <= 0:
        return
    bpm = 60000.0 / interval_ms
    if bpm < config.min_bpm or bpm > config.max_bpm:
        return

    bucket = round_half_up(bpm)
    histogram = state.histogram
    histogram[bucket] = histogram.get(bucket, 0.0) + 1.0

    for key in list(histogram):
        weight = histogram[key] * config.histogram_decay
        if weight < HISTOGRAM_FLOOR:
            del histogram[key]
        else:
            histogram[key] = weight


def record_onset(state: TempoState, config: TempoConfig, now: float) -> None:
    if len(state.onset_times) > 0:
        add_interval(state, config, now - state.onset_times.newest())
    state.onset_times.push(now)
    state.last_onset_time = now


def prune_history(state: TempoState, config: TempoConfig, now: float) -> None:
    cutoff = now - config.history_ms
    onsets = state.onset_times
    while len(onsets) > 0 and onsets.oldest() < cutoff:
        onsets.popleft()


def find_candidates(histogram: dict[int, float], config: TempoConfig) -> list[tuple[float, float]]:
    """
    Top histogram buckets as ``(bpm, weight)``, strongest first.

    Each candidate is moved to its double when the double has more than
    30% of its support, otherwise to its half when the half has more than
    50% of its support. Weights stay those of the source bucket.
    """
    ranked = sorted(histogram.items(), key=lambda item: item[1], reverse=True)[:TOP_CANDIDATES]

    candidates = []
    for bpm, weight in ranked:
        resolved = float(bpm)
        double = bpm * 2
        half = bpm / 2
        if double <= config.max_bpm and histogram.get(round_half_up(double), 0.0) > weight * DOUBLE_SUPPORT_RATIO:
            resolved = float(double)
        elif half >= config.min_bpm and histogram.get(round_half_up(half), 0.0) > weight * HALF_SUPPORT_RATIO:
            resolved = half
        candidates.append((resolved, weight))

    return candidates


def reestimate_tempo(state: TempoState, config: TempoConfig) -> None:
    """Feed the best candidate into the stability window and commit when settled."""
    if not state.histogram:
        return
    candidates = find_candidates(state.histogram, config)
    if not candidates:
        return

    best_bpm, best_weight = candidates[0]
    state.candidates.push(best_bpm)

    if state.candidates.std() >= STABLE_DEVIATION_BPM:
        state.stable_count = 0
        return

    state.stable_count += 1
    if state.stable_count < config.stability_frames:
        return

    new_bpm = config.clamp_bpm(round_half_up(state.candidates.mean()))
    if abs(new_bpm - state.bpm) > COMMIT_DEADBAND_BPM:
        log_event("info", "Tempo", "Tempo committed", bpm=new_bpm, previous=state.bpm)
        state.bpm = new_bpm

    total_weight = sum(state.histogram.values())
    state.confidence = min(1.0, (best_weight / total_weight) * 2.0)


def compute_beat_phase(state: TempoState, now: float) -> float:
    if state.bpm <= 0 or state.last_onset_time is None:
        return state.beat_phase
    interval = 60000.0 / state.bpm
    return ((now - state.last_onset_time) % interval) / interval


def detect_step(
    state: TempoState,
    config: TempoConfig,
    energy: float,
    bass: float,
    now: float,
) -> TempoResult:
    """
    Advance the detector by one frame.

    Args:
        state: Detector state, updated in place.
        config: Detector configuration.
        energy: Overall energy for the frame (0-1).
        bass: Bass energy for the frame (0-1).
        now: Frame time in milliseconds.

    Returns:
        TempoResult for this frame.
    """
    energy = finite_level(energy)
    bass = finite_level(bass)
    is_beat = detect_onset(state, config, energy, bass, now)
    if is_beat:
        record_onset(state, config, now)

    prune_history(state, config, now)

    if len(state.onset_times) >= MIN_ONSETS_FOR_ESTIMATE:
        reestimate_tempo(state, config)

    state.beat_phase = compute_beat_phase(state, now)

    return TempoResult(
        bpm=state.bpm,
        confidence=state.confidence,
        last_beat_time=state.last_onset_time,
        beat_phase=state.beat_phase,
        is_beat=is_beat,
    )


def tap_step(state: TempoState, config: TempoConfig, now: float) -> None:
    """
    Register a manual tap.

    Taps count as onsets. Once four are buffered the tempo is set straight
    from the mean of the most recent inter-tap intervals, skipping the
    stability window.
    """
    record_onset(state, config, now)
    prune_history(state, config, now)

    if len(state.onset_times) < MIN_ONSETS_FOR_ESTIMATE:
        return

    recent = state.onset_times.recent(TAP_INTERVALS + 1)
    mean_interval = float(np.diff(recent).mean())
    if mean_interval <= 0:
        return

    tapped = round_half_up(60000.0 / mean_interval)
    if config.min_bpm <= tapped <= config.max_bpm:
        state.bpm = float(tapped)
        state.confidence = TAP_CONFIDENCE
        log_event("info", "Tempo", "Tap tempo override", bpm=tapped)


class BeatTempoDetector:
    """
    Stateful wrapper around ``detect_step`` with an injectable clock.

    Call ``detect`` once per animation frame with the frame's energy and
    bass levels.
    """

    def __init__(
        self,
        config: TempoConfig | None = None,
        clock: Callable[[], float] | None = None,
        **overrides: Any,
    ):
        base = config or TempoConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.clock = clock or default_clock
        self.state = TempoState.initial(self.config)

    def _now(self, now: float | None) -> float:
        return self.clock() if now is None else now

    def detect(self, energy: float, bass: float, now: float | None = None) -> TempoResult:
        return detect_step(self.state, self.config, energy, bass, self._now(now))

    def tap(self, now: float | None = None) -> TempoResult:
        tap_step(self.state, self.config, self._now(now))
        return self.get_state()

    def get_state(self) -> TempoResult:
        """Current estimate without advancing; ``is_beat`` is always False."""
        return TempoResult(
            bpm=self.state.bpm,
            confidence=self.state.confidence,
            last_beat_time=self.state.last_onset_time,
            beat_phase=self.state.beat_phase,
            is_beat=False,
        )

    def time_until_next_beat(self, now: float | None = None) -> float:
        """Milliseconds until the predicted next beat, or -1 if unknown."""
        if self.state.bpm <= 0 or self.state.last_onset_time is None:
            return -1.0
        interval = 60000.0 / self.state.bpm
        elapsed = self._now(now) - self.state.last_onset_time
        return interval - (elapsed % interval)

    def get_beat_history(self) -> list[float]:
        return self.state.onset_times.values().tolist()

    def get_histogram(self) -> list[tuple[int, float]]:
        """Histogram buckets as ``(bpm, weight)`` sorted by BPM."""
        return sorted(self.state.histogram.items())

    def update_config(self, **changes: Any) -> None:
        self.config = dataclasses.replace(self.config, **changes)
        self.state.bpm = self.config.clamp_bpm(self.state.bpm)
        log_event("debug", "Tempo", "Configuration updated", **changes)

    def reset(self) -> None:
        self.state = TempoState.initial(self.config)
        log_event("debug", "Tempo", "Detector reset")
