"""
Beat trigger: a one-shot intensity envelope for transient effects
(camera shake, glitches, flashes) that fires on strong beats.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from pulsescope.core.tempo import default_clock

SILENCE_FLOOR = 0.001


@dataclass(frozen=True)
class TriggerConfig:
    decay_rate: float = 0.92  # higher = slower decay
    debounce_ms: float = 100.0
    threshold: float = 0.7  # minimum beat intensity that fires

    def __post_init__(self):
        object.__setattr__(self, "decay_rate", float(np.clip(self.decay_rate, 0.0, 1.0)))
        object.__setattr__(self, "threshold", float(np.clip(self.threshold, 0.0, 1.0)))


class BeatTrigger:
    """Latches to 1.0 on a qualifying beat and decays exponentially."""

    def __init__(
        self,
        config: TriggerConfig | None = None,
        clock: Callable[[], float] | None = None,
        **overrides: Any,
    ):
        base = config or TriggerConfig()
        self.config = dataclasses.replace(base, **overrides) if overrides else base
        self.clock = clock or default_clock
        self.intensity = 0.0
        self.last_trigger_time: float | None = None

    def update(self, is_beat: bool, beat_intensity: float, now: float | None = None) -> float:
        now = self.clock() if now is None else now
        debounced = (
            self.last_trigger_time is None
            or now - self.last_trigger_time >= self.config.debounce_ms
        )
        if is_beat and beat_intensity >= self.config.threshold and debounced:
            self.intensity = 1.0
            self.last_trigger_time = now

        self.intensity *= self.config.decay_rate
        if self.intensity < SILENCE_FLOOR:
            self.intensity = 0.0
        return self.intensity

    def update_config(self, **changes: Any) -> None:
        self.config = dataclasses.replace(self.config, **changes)

    def reset(self) -> None:
        self.intensity = 0.0
        self.last_trigger_time = None
