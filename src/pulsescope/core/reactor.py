"""
Audio reactor module.

Maps a slice of a normalized spectrum onto a single bounded control
value (a shader uniform, a camera parameter...) through one of several
transform modes, and manages named collections of such mappings.
"""

import dataclasses
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

import numpy as np

from pulsescope.logging_utils import log_event

CYCLE_SPEED = 0.05
MULTIPLY_FLOOR = 0.1
PULSE_REARM_LEVEL = 0.5


class ReactorMode(str, Enum):
    """How a reactor transforms its band level."""

    ADD = "add"  # direct mapping
    SUBTRACT = "subtract"  # inverted, 1 - value
    MULTIPLY = "multiply"  # compounds against the previous output
    CYCLE = "cycle"  # accumulates into a wrapping phase
    PULSE = "pulse"  # latches on threshold, then decays


@dataclass(frozen=True)
class ReactorConfig:
    """Settings for a single reactor."""

    start_freq: float = 0.0  # fraction of the spectrum, 0-1
    end_freq: float = 1.0
    mode: ReactorMode = ReactorMode.ADD
    sensitivity: float = 1.0
    smoothing: float = 0.5
    min_value: float = 0.0
    max_value: float = 1.0
    threshold: float = 0.5  # pulse mode
    decay_rate: float = 0.95  # pulse mode

    def __post_init__(self):
        object.__setattr__(self, "mode", ReactorMode(self.mode))
        object.__setattr__(self, "start_freq", float(np.clip(self.start_freq, 0.0, 1.0)))
        object.__setattr__(self, "end_freq", float(np.clip(self.end_freq, 0.0, 1.0)))
        object.__setattr__(self, "smoothing", float(np.clip(self.smoothing, 0.0, 0.999)))
        object.__setattr__(self, "decay_rate", float(np.clip(self.decay_rate, 0.0, 1.0)))

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["mode"] = self.mode.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReactorConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class ReactorState:
    smoothed: float = 0.0
    accumulator: float = 0.0
    pulse: float = 0.0


def band_level(frequency_data: Sequence[float] | np.ndarray, start_freq: float, end_freq: float) -> float:
    """Mean of the ``[start_freq, end_freq]`` slice; missing or NaN bins count as 0."""
    data = np.nan_to_num(np.asarray(frequency_data, dtype=np.float64), nan=0.0, posinf=1.0, neginf=0.0)
    n = data.size
    start = int(math.floor(start_freq * n))
    end = max(start + 1, int(math.ceil(end_freq * n)))
    return float(data[start:end].sum() / (end - start))


def apply_mode(state: ReactorState, config: ReactorConfig, value: float) -> float:
    """Mode transform; updates the cycle accumulator and pulse level in ``state``."""
    mode = config.mode
    if mode is ReactorMode.SUBTRACT:
        return 1.0 - value
    if mode is ReactorMode.MULTIPLY:
        return max(MULTIPLY_FLOOR, state.smoothed) * (0.5 + value * 0.5)
    if mode is ReactorMode.CYCLE:
        state.accumulator = (state.accumulator + value * CYCLE_SPEED) % 1.0
        return state.accumulator
    if mode is ReactorMode.PULSE:
        if value > config.threshold and state.pulse < PULSE_REARM_LEVEL:
            state.pulse = 1.0
        state.pulse *= config.decay_rate
        return state.pulse
    return value


def map_to_range(config: ReactorConfig, value: float) -> float:
    return config.min_value + min(max(value, 0.0), 1.0) * (config.max_value - config.min_value)


def process_reactor(
    state: ReactorState,
    config: ReactorConfig,
    frequency_data: Sequence[float] | np.ndarray,
) -> float:
    """
    Produce the reactor's output for one spectrum frame.

    An empty frame leaves the state untouched and returns the previous
    output.
    """
    if frequency_data is None or len(frequency_data) == 0:
        return map_to_range(config, state.smoothed)

    level = band_level(frequency_data, config.start_freq, config.end_freq)
    value = apply_mode(state, config, level * config.sensitivity)

    value = state.smoothed * config.smoothing + value * (1.0 - config.smoothing)
    state.smoothed = value
    return map_to_range(config, value)


class AudioReactor:
    """A single spectrum-to-parameter mapping."""

    def __init__(self, config: ReactorConfig | None = None, **overrides: Any):
        base = config or ReactorConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.state = ReactorState()

    def process(self, frequency_data: Sequence[float] | np.ndarray) -> float:
        return process_reactor(self.state, self.config, frequency_data)

    def update_config(self, **changes: Any) -> None:
        self.config = dataclasses.replace(self.config, **changes)

    def get_config(self) -> ReactorConfig:
        return self.config

    def reset(self) -> None:
        self.state = ReactorState()


REACTOR_PRESETS: dict[str, ReactorConfig] = {
    # Bass drives rotation through the cycle accumulator.
    "bass_rotation": ReactorConfig(
        start_freq=0.0, end_freq=0.1, mode=ReactorMode.CYCLE,
        sensitivity=2.0, smoothing=0.3, min_value=0.0, max_value=2 * math.pi,
    ),
    "mid_brightness": ReactorConfig(
        start_freq=0.1, end_freq=0.5, mode=ReactorMode.ADD,
        sensitivity=1.5, smoothing=0.5, min_value=0.2, max_value=1.0,
    ),
    "high_energy": ReactorConfig(
        start_freq=0.5, end_freq=1.0, mode=ReactorMode.ADD,
        sensitivity=1.0, smoothing=0.2, min_value=0.0, max_value=1.0,
    ),
    # Bass triggers a decaying pulse.
    "bass_pulse": ReactorConfig(
        start_freq=0.0, end_freq=0.08, mode=ReactorMode.PULSE,
        sensitivity=2.5, smoothing=0.0, threshold=0.6, decay_rate=0.92,
        min_value=0.0, max_value=1.0,
    ),
    "spectrum_zoom": ReactorConfig(
        start_freq=0.0, end_freq=1.0, mode=ReactorMode.ADD,
        sensitivity=1.0, smoothing=0.6, min_value=0.8, max_value=1.5,
    ),
    # Inverted bass, for glow that dims on hits.
    "inverted_bass": ReactorConfig(
        start_freq=0.0, end_freq=0.15, mode=ReactorMode.SUBTRACT,
        sensitivity=1.5, smoothing=0.4, min_value=0.3, max_value=1.0,
    ),
}


class ReactorManager:
    """Named collection of reactors, one per driven parameter."""

    def __init__(self):
        self.reactors: dict[str, AudioReactor] = {}

    def set_reactor(self, name: str, config: ReactorConfig | Mapping[str, Any] | None = None, **changes: Any) -> AudioReactor:
        """
        Create or update the reactor called ``name``.

        ``config`` may be a ReactorConfig (replaces the existing config)
        or a mapping of partial changes; keyword arguments are applied on
        top.
        """
        if isinstance(config, ReactorConfig):
            base = config
        else:
            existing = self.reactors.get(name)
            base = existing.config if existing else ReactorConfig()
            if config:
                changes = {**config, **changes}
        if changes:
            base = dataclasses.replace(base, **changes)

        reactor = self.reactors.get(name)
        if reactor is None:
            reactor = AudioReactor(base)
            self.reactors[name] = reactor
            log_event("debug", "Reactor", "Reactor created", name=name, mode=base.mode.value)
        else:
            reactor.config = base
        return reactor

    def get_reactor(self, name: str) -> AudioReactor | None:
        return self.reactors.get(name)

    def has_reactor(self, name: str) -> bool:
        return name in self.reactors

    def process(self, name: str, frequency_data: Sequence[float] | np.ndarray) -> float | None:
        reactor = self.reactors.get(name)
        return reactor.process(frequency_data) if reactor else None

    def process_all(self, frequency_data: Sequence[float] | np.ndarray) -> dict[str, float]:
        return {name: reactor.process(frequency_data) for name, reactor in self.reactors.items()}

    def apply_preset(self, name: str, preset: str) -> AudioReactor:
        """Bind ``name`` to one of ``REACTOR_PRESETS``; raises KeyError if unknown."""
        if preset not in REACTOR_PRESETS:
            raise KeyError(f"Unknown reactor preset {preset!r}")
        return self.set_reactor(name, REACTOR_PRESETS[preset])

    def reset_all(self) -> None:
        for reactor in self.reactors.values():
            reactor.reset()

    def remove_reactor(self, name: str) -> None:
        self.reactors.pop(name, None)

    def clear_all(self) -> None:
        self.reactors.clear()

    def reactor_names(self) -> list[str]:
        return list(self.reactors)

    def get_all_configs(self) -> dict[str, dict[str, Any]]:
        """Export every reactor's configuration as plain dicts."""
        return {name: reactor.config.to_dict() for name, reactor in self.reactors.items()}

    def load_configs(self, configs: Mapping[str, Mapping[str, Any]]) -> None:
        """Create or update reactors from plain dicts (as produced by ``get_all_configs``)."""
        for name, data in configs.items():
            if name in self.reactors:
                known = ReactorConfig.from_dict(data).to_dict()
                self.set_reactor(name, {key: known[key] for key in data if key in known})
            else:
                self.set_reactor(name, ReactorConfig.from_dict(data))
