"""Tests for the BeatTrigger module."""

import pytest

from pulsescope.core.trigger import BeatTrigger, TriggerConfig


class TestBeatTrigger:
    """Tests for the beat impact envelope."""

    def test_fires_on_strong_beat(self):
        trigger = BeatTrigger()
        assert trigger.update(True, 0.9, now=0.0) == pytest.approx(0.92)

    def test_weak_beat_ignored(self):
        trigger = BeatTrigger()
        assert trigger.update(True, 0.5, now=0.0) == 0.0

    def test_decays_to_zero(self):
        trigger = BeatTrigger()
        trigger.update(True, 1.0, now=0.0)

        values = [trigger.update(False, 0.0, now=16.0 * i) for i in range(1, 200)]
        assert all(b <= a for a, b in zip(values, values[1:]))
        assert values[-1] == 0.0

    def test_debounce(self):
        trigger = BeatTrigger(decay_rate=0.5)
        trigger.update(True, 1.0, now=0.0)

        assert trigger.update(True, 1.0, now=50.0) == pytest.approx(0.25)
        assert trigger.update(True, 1.0, now=100.0) == pytest.approx(0.5)

    def test_injected_clock(self):
        ticks = iter([0.0, 10.0, 200.0])
        trigger = BeatTrigger(clock=lambda: next(ticks))

        trigger.update(True, 1.0)
        trigger.update(True, 1.0)
        assert trigger.last_trigger_time == 0.0
        trigger.update(True, 1.0)
        assert trigger.last_trigger_time == 200.0

    def test_config_clamped(self):
        config = TriggerConfig(decay_rate=1.5, threshold=-1.0)
        assert config.decay_rate == 1.0
        assert config.threshold == 0.0

    def test_update_config_and_reset(self):
        trigger = BeatTrigger()
        trigger.update(True, 1.0, now=0.0)
        trigger.update_config(threshold=0.2)
        trigger.reset()

        assert trigger.intensity == 0.0
        assert trigger.last_trigger_time is None
        assert trigger.update(True, 0.3, now=0.0) > 0.0
