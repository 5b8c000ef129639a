import math

import numpy as np
import pytest

from pitchhandler.mpm_processor import (
    ConfigurationError,
    FFTTransform,
    McLeodProcessor,
    autocorrelation,
    build_nsdf,
    difference_energy,
    frequency_to_note,
    parabolic_interpolation,
    select_key_maximum,
)

SAMPLE_RATE = 44100
W = 2048


class ComplexFFT(FFTTransform):
    """Full complex transform, same scaling convention as numpy ifft."""

    def forward(self, signal, n):
        return np.fft.fft(signal, n=n)

    def inverse(self, spectrum, n):
        return np.fft.ifft(spectrum, n=n).real


def test_square_wave_energy_and_autocorrelation():
    window = np.array([1, 1, 1, 1, -1, -1, -1, -1], dtype=np.float32)

    m = difference_energy(window)
    r = autocorrelation(window)
    nsdf = build_nsdf(m, r)

    assert len(m) == len(r) == 4
    assert m[0] == pytest.approx(16.0)
    assert r[0] == pytest.approx(8.0)
    assert nsdf[0] == pytest.approx(1.0)


def test_difference_energy_matches_direct_sum():
    rng = np.random.default_rng(1)
    window = rng.uniform(-1, 1, 64)

    m = difference_energy(window)

    expected = [np.sum(window[:64 - tau] ** 2) + np.sum(window[tau:] ** 2) for tau in range(32)]
    np.testing.assert_allclose(m, expected, rtol=1e-9)


def test_autocorrelation_matches_lagged_products():
    rng = np.random.default_rng(2)
    window = rng.uniform(-1, 1, 128)

    r = autocorrelation(window)

    expected = np.correlate(window, window, mode="full")[127:127 + 64]
    np.testing.assert_allclose(r, expected, atol=1e-9)


def test_autocorrelation_accepts_other_transform():
    rng = np.random.default_rng(3)
    window = rng.uniform(-1, 1, 256)

    np.testing.assert_allclose(
        autocorrelation(window, ComplexFFT()), autocorrelation(window), atol=1e-9
    )


def test_nsdf_is_one_at_zero_lag():
    rng = np.random.default_rng(4)
    window = rng.normal(size=W).astype(np.float32)

    nsdf = build_nsdf(difference_energy(window), autocorrelation(window))

    assert nsdf[0] == pytest.approx(1.0, abs=1e-6)


def test_nsdf_of_silence_is_not_finite():
    window = np.zeros(16)

    nsdf = build_nsdf(difference_energy(window), autocorrelation(window))

    assert not np.isfinite(nsdf).any()


@pytest.mark.parametrize("freq", [110.0, 220.0, 440.0, 880.0])
def test_selector_and_refiner_on_sine(sine, freq):
    window = sine(freq, W, SAMPLE_RATE)
    nsdf = McLeodProcessor(SAMPLE_RATE, W).compute_nsdf(window)

    tau = select_key_maximum(nsdf, 0.8)
    lag, clarity = parabolic_interpolation(nsdf, tau)

    assert abs(tau - SAMPLE_RATE / freq) <= 1.0
    assert clarity > 0.9
    assert lag == pytest.approx(SAMPLE_RATE / freq, abs=0.1)


def test_selector_rejects_short_first_lobe():
    # lobe 1 peaks at 0.5 (idx 4), lobe 2 peaks at 1.0 (idx 8)
    nsdf = np.array([1.0, 0.5, -0.5, 0.2, 0.5, 0.2, -0.5, 0.4, 1.0, 0.4, -0.5, 0.1])

    assert select_key_maximum(nsdf, 0.8) == 8


def test_selector_prefers_first_tall_lobe():
    nsdf = np.array([1.0, 0.2, -0.4, 0.6, 0.9, 0.6, -0.4, 0.5, 0.95, 0.5, -0.3, 0.0])

    assert select_key_maximum(nsdf, 0.8) == 4


def test_selector_without_negative_values_returns_none():
    assert select_key_maximum(np.array([1.0, 0.9, 0.8, 0.5, 0.2]), 0.8) is None


def test_selector_falls_through_to_last_lobe():
    # no lobe strictly exceeds 1.0 * global max
    nsdf = np.array([1.0, -0.5, 0.5, -0.2, 0.1, 0.3, -0.1])

    assert select_key_maximum(nsdf, 1.0) == 5


def test_selector_falls_through_to_open_trailing_lobe():
    nsdf = np.array([1.0, -0.5, 0.3, -0.5, 0.6, 1.0])

    assert select_key_maximum(nsdf, 0.8) == 5


def test_selector_keeps_rejected_lobe_when_tail_is_negative():
    nsdf = np.array([1.0, -0.5, 0.4, 0.5, -0.2, -0.1, -0.3])

    assert select_key_maximum(nsdf, 1.0) == 3


def test_selector_with_no_positive_lobe_returns_none():
    assert select_key_maximum(np.array([1.0, 0.5, -0.5, -0.7, -0.2]), 0.8) is None


def test_parabolic_interpolation_recovers_vertex():
    nsdf = np.zeros(20)
    for x in (9, 10, 11):
        nsdf[x] = -(x - 10.3) ** 2 + 5.0

    lag, value = parabolic_interpolation(nsdf, 10)

    assert lag == pytest.approx(10.3)
    assert value == pytest.approx(5.0)


def test_parabolic_interpolation_flat_neighbourhood_falls_back():
    nsdf = np.array([1.0, 2.0, 3.0, 4.0])

    assert parabolic_interpolation(nsdf, 1) == (1.0, 2.0)


@pytest.mark.parametrize("tau", [0, 3])
def test_parabolic_interpolation_at_edges_falls_back(tau):
    nsdf = np.array([1.0, 0.5, 0.2, 0.7])

    assert parabolic_interpolation(nsdf, tau) == (float(tau), nsdf[tau])


def test_frequency_to_note():
    assert frequency_to_note(440.0) == pytest.approx(69.0)
    assert frequency_to_note(880.0) == pytest.approx(81.0)
    assert frequency_to_note(220.0) == pytest.approx(57.0)
    assert frequency_to_note(442.0, reference_pitch=442.0) == pytest.approx(69.0)
    assert frequency_to_note(440.0 * 2 ** (1 / 12)) == pytest.approx(70.0)


def test_process_sine_returns_a4(sine):
    processor = McLeodProcessor(SAMPLE_RATE, W)

    result = processor.process(sine(440.0, W, SAMPLE_RATE, phase=0.7))

    assert result is not None
    assert result.note == pytest.approx(69.0, abs=0.1)
    assert result.frequency == pytest.approx(440.0, rel=0.005)
    assert result.lag == pytest.approx(SAMPLE_RATE / 440.0, abs=0.2)
    assert result.clarity > 0.9


def test_process_uses_reference_pitch(sine):
    processor = McLeodProcessor(SAMPLE_RATE, W, reference_pitch=415.0)

    result = processor.process(sine(415.0, W, SAMPLE_RATE))

    assert result.note == pytest.approx(69.0, abs=0.1)


def test_process_silence_returns_none():
    assert McLeodProcessor(SAMPLE_RATE, W).process(np.zeros(W, dtype=np.float32)) is None


def test_process_dc_returns_none():
    assert McLeodProcessor(SAMPLE_RATE, W).process(np.ones(W, dtype=np.float32)) is None


def test_process_result_is_finite_for_noise():
    rng = np.random.default_rng(5)
    processor = McLeodProcessor(SAMPLE_RATE, W)

    for _ in range(5):
        result = processor.process(rng.uniform(-1, 1, W).astype(np.float32))
        if result is not None:
            assert math.isfinite(result.note)
            assert math.isfinite(result.clarity)


def test_process_non_finite_note_returns_none(sine):
    processor = McLeodProcessor(SAMPLE_RATE, W)
    processor.reference_pitch = float("nan")

    assert processor.process(sine(440.0, W, SAMPLE_RATE)) is None


def test_window_size_given_as_whole_float():
    assert McLeodProcessor(SAMPLE_RATE, 2048.0).window_size == 2048


def test_process_rejects_wrong_window_length():
    with pytest.raises(ValueError):
        McLeodProcessor(SAMPLE_RATE, W).process(np.zeros(W - 1))


@pytest.mark.parametrize("kwargs", [
    {"sample_rate": 0},
    {"sample_rate": -44100},
    {"sample_rate": float("nan")},
    {"sample_rate": float("inf")},
    {"window_size": 0},
    {"window_size": -8},
    {"window_size": 10.5},
    {"window_size": float("nan")},
    {"window_size": float("inf")},
    {"threshold": 0.0},
    {"threshold": 1.5},
    {"threshold": float("nan")},
    {"reference_pitch": 0.0},
    {"reference_pitch": float("nan")},
    {"reference_pitch": float("inf")},
])
def test_invalid_configuration_is_rejected(kwargs):
    params = {"sample_rate": SAMPLE_RATE, "window_size": W}
    params.update(kwargs)

    with pytest.raises(ConfigurationError):
        McLeodProcessor(**params)
