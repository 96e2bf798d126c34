"""Tests for the spectrum and waveform normalizers."""

import dataclasses

import numpy as np
import pytest

from pulsescope.core.spectrum import (
    BinRange,
    SpectrumConfig,
    SpectrumParser,
    WaveParser,
    byte_to_level,
)


@pytest.fixture
def flat_config() -> SpectrumConfig:
    """256 source bins of 4 Hz starting at 0 Hz, no smoothing."""
    return SpectrumConfig(
        fft_size=512,
        sample_rate=2048,
        min_frequency=0.0,
        max_frequency=1024.0,
        smoothing=0.0,
    )


class TestSpectrumConfig:
    """Tests for configuration validation and bin derivation."""

    def test_default_bin_range(self):
        """Defaults should select 20-6000 Hz of a 2048-point FFT at 44.1 kHz."""
        bins = BinRange.from_config(SpectrumConfig())

        assert bins.start_bin == 0
        assert bins.end_bin == 278
        assert bins.total_bins == 278

    def test_min_frequency_must_be_below_max(self):
        with pytest.raises(ValueError):
            SpectrumConfig(min_frequency=5000.0, max_frequency=5000.0)

    def test_max_frequency_above_nyquist(self):
        with pytest.raises(ValueError):
            SpectrumConfig(sample_rate=8000, max_frequency=6000.0)

    def test_decibel_range_must_be_ordered(self):
        with pytest.raises(ValueError):
            SpectrumConfig(min_decibels=-10.0, max_decibels=-20.0)

    def test_unknown_encoding(self):
        with pytest.raises(ValueError):
            SpectrumConfig(encoding="float16")

    def test_smoothing_is_clamped(self):
        """Out-of-range smoothing should be clamped, not rejected."""
        assert SpectrumConfig(smoothing=-1.0).smoothing == 0.0
        assert SpectrumConfig(smoothing=5.0).smoothing < 1.0


class TestByteToLevel:
    """Tests for the per-bin decibel conversion."""

    def test_endpoints(self):
        """Byte 0 should map to 0 and the ceiling should saturate at 1."""
        config = SpectrumConfig()
        levels = byte_to_level(np.array([0, 255]), config)

        assert levels[0] == pytest.approx(0.0, abs=1e-12)
        assert levels[1] == pytest.approx(1.0)

    def test_matches_closed_form(self):
        """Conversion should follow db = min_db * (1 - raw/256) and 10^(db/20)."""
        config = SpectrumConfig()
        raw = np.array([64.0, 128.0, 200.0])
        db = config.min_decibels * (1 - raw / 256)
        mag = np.exp(0.1151292546497023 * db)
        lo = np.exp(0.1151292546497023 * config.min_decibels)
        hi = np.exp(0.1151292546497023 * config.max_decibels)
        expected = np.clip((mag - lo) / (hi - lo), 0, 1)

        assert np.allclose(byte_to_level(raw, config), expected)

    def test_monotonic(self):
        levels = byte_to_level(np.arange(256), SpectrumConfig())
        assert np.all(np.diff(levels) >= 0)


class TestSpectrumParser:
    """Tests for FFT frame normalization."""

    def test_unsmoothed_output_is_direct_conversion(self, byte_frame):
        """With smoothing=0, output should equal the per-bin conversion."""
        parser = SpectrumParser(smoothing=0.0)
        bins = parser.bin_range
        expected = byte_to_level(byte_frame[bins.start_bin:bins.end_bin], parser.config)

        result = parser.parse(byte_frame)

        assert result.shape == (bins.total_bins,)
        assert np.allclose(result, expected, atol=1e-6)

    def test_unsmoothed_output_ignores_history(self, byte_frame, silent_frame):
        """Previous frames should not leak into an unsmoothed parse."""
        fresh = SpectrumParser(smoothing=0.0).parse(byte_frame).copy()

        parser = SpectrumParser(smoothing=0.0)
        parser.parse(silent_frame)
        parser.parse(byte_frame[::-1])
        result = parser.parse(byte_frame)

        assert np.allclose(result, fresh)

    def test_compression_keeps_peaks(self, flat_config):
        """256 -> 32 bins should take the max of each 8-bin span."""
        rng = np.random.default_rng(7)
        frame = rng.integers(0, 200, size=257)
        # Plant one loud transient per span so averaging would hide it.
        frame[3] = 250
        frame[8 * 17 + 5] = 240

        parser = SpectrumParser(flat_config)
        result = parser.parse(frame, bins=32)

        spans = frame[:256].reshape(32, 8)
        expected = byte_to_level(spans.max(axis=1), flat_config)
        averaged = byte_to_level(spans.mean(axis=1), flat_config)

        assert np.allclose(result, expected, atol=1e-6)
        assert result[0] > averaged[0]
        assert result[17] > averaged[17]

    def test_expansion_replicates_bins(self, flat_config):
        """256 -> 512 bins should repeat each source level twice."""
        frame = np.arange(257) % 256
        parser = SpectrumParser(flat_config)
        result = parser.parse(frame, bins=512)

        levels = byte_to_level(frame[:256], flat_config)
        assert np.allclose(result[0::2], levels, atol=1e-6)
        assert np.allclose(result[1::2], levels, atol=1e-6)

    def test_temporal_smoothing(self, flat_config):
        """Repeated frames should approach their level geometrically."""
        config = dataclasses.replace(flat_config, smoothing=0.5)
        frame = np.full(257, 255)
        parser = SpectrumParser(config)

        first = parser.parse(frame).copy()
        second = parser.parse(frame).copy()

        assert np.allclose(first, 0.5)
        assert np.allclose(second, 0.75)

    def test_smoothing_state_resets_on_resize(self, flat_config):
        """Changing the output size should start from zeroed buffers."""
        config = dataclasses.replace(flat_config, smoothing=0.5)
        frame = np.full(257, 255)
        parser = SpectrumParser(config)
        parser.parse(frame, bins=64)
        parser.parse(frame, bins=64)

        result = parser.parse(frame, bins=32)
        assert np.allclose(result, 0.5)

    def test_silent_frame_is_all_zero(self, silent_frame):
        result = SpectrumParser().parse(silent_frame)
        assert np.all(result == 0.0)

    def test_empty_frame_returns_current_output(self, byte_frame):
        """Empty input should leave the last output untouched."""
        parser = SpectrumParser(smoothing=0.0)
        before = parser.parse(byte_frame).copy()

        after = parser.parse([])

        assert np.array_equal(before, after)

    def test_short_frame_reads_missing_bins_as_zero(self, flat_config):
        frame = np.full(100, 255)
        result = SpectrumParser(flat_config).parse(frame)

        assert np.allclose(result[:100], 1.0)
        assert np.all(result[100:] == 0.0)

    def test_linear_encoding_passes_through(self, flat_config):
        """Already-normalized frames should only be clipped."""
        config = dataclasses.replace(flat_config, encoding="linear")
        frame = np.linspace(-0.5, 1.5, 257)
        result = SpectrumParser(config).parse(frame)

        assert np.allclose(result, np.clip(frame[:256], 0, 1), atol=1e-6)

    def test_update_config_rederives_bins(self):
        """Frequency bound changes should recompute the bin range."""
        parser = SpectrumParser()
        parser.update_config(max_frequency=3000.0)

        assert parser.get_bin_info()["end_bin"] == 139

    def test_update_config_keeps_bins_for_other_fields(self):
        parser = SpectrumParser()
        bins = parser.bin_range
        parser.update_config(smoothing=0.2)

        assert parser.bin_range is bins
        assert parser.get_config().smoothing == 0.2

    def test_update_config_validates(self):
        parser = SpectrumParser()
        with pytest.raises(ValueError):
            parser.update_config(min_frequency=7000.0)

    def test_get_energy_is_mean_level(self, byte_frame):
        parser = SpectrumParser()
        bins = parser.bin_range
        expected = byte_to_level(byte_frame[bins.start_bin:bins.end_bin], parser.config).mean()

        assert parser.get_energy(byte_frame) == pytest.approx(expected)

    def test_get_energy_empty(self):
        assert SpectrumParser().get_energy([]) == 0.0

    def test_nan_frame_does_not_stick(self, flat_config):
        """A NaN frame should read as silence and leave the smoothing usable."""
        config = dataclasses.replace(flat_config, encoding="linear", smoothing=0.5)
        parser = SpectrumParser(config)

        assert np.all(parser.parse(np.full(257, np.nan)) == 0.0)
        for _ in range(200):
            result = parser.parse(np.full(257, 0.5))

        assert np.allclose(result, 0.5)

    def test_nan_frame_when_resampling(self, flat_config):
        parser = SpectrumParser(flat_config)
        frame = np.full(257, 255.0)
        frame[::3] = np.nan

        compressed = parser.parse(frame, 32)
        assert np.all(np.isfinite(compressed))
        expanded = parser.parse(frame, 512)
        assert np.all(np.isfinite(expanded))

    def test_infinite_bins_are_pinned(self, flat_config):
        frame = np.zeros(257)
        frame[:3] = [np.inf, -np.inf, np.nan]
        result = SpectrumParser(flat_config).parse(frame)

        assert result[0] == 1.0
        assert result[1] == 0.0
        assert result[2] == 0.0

    def test_get_energy_ignores_nan(self):
        parser = SpectrumParser()
        assert parser.get_energy(np.full(1025, np.nan)) == 0.0

    def test_reset(self, byte_frame):
        parser = SpectrumParser()
        parser.parse(byte_frame)
        parser.reset()

        assert np.all(parser.state.output == 0)
        assert np.all(parser.state.previous == 0)


class TestWaveParser:
    """Tests for time-domain normalization."""

    def test_float_samples(self):
        """Samples in [-1, 1] should map linearly onto [0, 1]."""
        data = np.array([-1.0, 0.0, 0.5, 1.0], dtype=np.float32)
        result = WaveParser().parse(data, 4)

        assert np.allclose(result, [0.0, 0.5, 0.75, 1.0])

    def test_byte_samples(self):
        """uint8 samples should map 0-255 onto [0, 1]."""
        data = np.array([0, 255, 128, 64], dtype=np.uint8)
        result = WaveParser().parse(data, 4)

        assert np.allclose(result, [0.0, 1.0, 128 / 255, 64 / 255])

    def test_byte_detected_from_first_sample(self):
        """A plain list whose first sample exceeds 1 should read as bytes."""
        result = WaveParser().parse([255, 0], 2)
        assert np.allclose(result, [1.0, 0.0])

    def test_nearest_neighbour_downsampling(self):
        data = np.linspace(-1, 1, 8)
        result = WaveParser().parse(data, 4)

        assert np.allclose(result, (data[[0, 2, 4, 6]] + 1) / 2)

    def test_upsampling(self):
        data = np.array([-1.0, 1.0])
        result = WaveParser().parse(data, 4)

        assert np.allclose(result, [0.0, 0.0, 1.0, 1.0])

    def test_smoothing(self):
        parser = WaveParser(smoothing=0.5)
        data = np.ones(4)

        assert np.allclose(parser.parse(data, 4), 0.5)
        assert np.allclose(parser.parse(data, 4), 0.75)

    def test_empty_input(self):
        result = WaveParser().parse([], 8)
        assert result.shape == (8,)
        assert np.all(result == 0)

    def test_non_finite_samples(self):
        """NaN sits on the centre line; infinities pin to the extremes."""
        parser = WaveParser(smoothing=0.5)
        data = np.array([np.nan, 0.5, np.inf, -np.inf])

        assert np.all(np.isfinite(parser.parse(data, 4)))
        for _ in range(200):
            result = parser.parse(np.zeros(4), 4)

        assert np.allclose(result, 0.5)

    def test_non_finite_sample_values(self):
        result = WaveParser().parse(np.array([np.nan, 0.5, np.inf, -np.inf]), 4)
        assert np.allclose(result, [0.5, 0.75, 1.0, 0.0])
