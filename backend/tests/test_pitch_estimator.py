"""Unit tests for the YIN fundamental frequency estimator."""
import pytest
import numpy as np
from harmonisync.audio.dsp.pitch import (
    YinPitchEstimator,
    difference_function,
    parabolic_interpolation,
)

SAMPLE_RATE = 44100
FRAME_SIZE = 2048


def sine(frequency, amplitude=0.5, n=FRAME_SIZE, sample_rate=SAMPLE_RATE):
    t = np.arange(n) / sample_rate
    return amplitude * np.sin(2 * np.pi * frequency * t)


@pytest.mark.parametrize("frequency", [110.0, 220.0, 261.63, 440.0, 880.0])
def test_sine_frequency_within_one_percent(frequency):
    """Test that a clean sine is estimated within 1%."""
    estimator = YinPitchEstimator()

    candidate = estimator.estimate(sine(frequency), SAMPLE_RATE)

    assert candidate.has_pitch
    assert candidate.frequency_hz == pytest.approx(frequency, rel=0.01)
    assert candidate.periodicity_confidence > 0.9


def test_sine_at_16khz():
    """Test estimation at a lower sample rate and shorter frame."""
    estimator = YinPitchEstimator()

    candidate = estimator.estimate(sine(196.0, n=1024, sample_rate=16000), 16000)

    assert candidate.frequency_hz == pytest.approx(196.0, rel=0.01)


def test_silence_returns_no_candidate():
    """Test that an all-zero frame short-circuits to no candidate."""
    estimator = YinPitchEstimator()

    candidate = estimator.estimate(np.zeros(FRAME_SIZE), SAMPLE_RATE)

    assert not candidate.has_pitch
    assert candidate.periodicity_confidence == 0.0
    assert estimator.statistics()["silent_frames"] == 1


def test_signal_below_silence_floor_returns_no_candidate():
    """Test that a tone quieter than the silence floor is ignored."""
    estimator = YinPitchEstimator(silence_floor=1e-3)

    candidate = estimator.estimate(sine(440.0, amplitude=1e-4), SAMPLE_RATE)

    assert not candidate.has_pitch


def test_frequency_below_range_is_discarded_not_clamped():
    """Test that a pitch just under the vocal range is reported as no candidate."""
    estimator = YinPitchEstimator(min_frequency_hz=65.0, max_frequency_hz=1000.0)

    candidate = estimator.estimate(sine(64.0), SAMPLE_RATE)

    assert not candidate.has_pitch
    assert candidate.frequency_hz == 0.0


def test_white_noise_has_low_periodicity():
    """Test that white noise never looks strongly periodic."""
    np.random.seed(42)
    estimator = YinPitchEstimator()

    confidences = []
    for _ in range(20):
        noise = np.random.normal(0.0, 0.1, FRAME_SIZE)
        confidences.append(estimator.estimate(noise, SAMPLE_RATE).periodicity_confidence)

    assert max(confidences) < 0.6


def test_frame_too_short_returns_no_candidate():
    """Test that a frame shorter than two vocal periods yields nothing."""
    estimator = YinPitchEstimator()

    candidate = estimator.estimate(sine(440.0, n=64), SAMPLE_RATE)

    assert not candidate.has_pitch


def test_difference_function_matches_direct_sum():
    """Test the FFT-based difference function against the textbook definition."""
    np.random.seed(7)
    x = np.random.uniform(-1.0, 1.0, 300)
    max_lag = 100
    window = len(x) - max_lag

    expected = np.array([
        np.sum((x[:window] - x[tau:tau + window]) ** 2) for tau in range(max_lag + 1)
    ])

    assert np.allclose(difference_function(x, max_lag), expected, atol=1e-9)


def test_parabolic_interpolation_finds_vertex():
    """Test sub-sample refinement on an exact parabola."""
    values = (np.arange(5) - 2.3) ** 2

    assert parabolic_interpolation(values, 2) == pytest.approx(2.3)


def test_parabolic_interpolation_at_edges():
    """Test that edge indices are returned unchanged."""
    values = np.array([0.0, 1.0, 2.0])

    assert parabolic_interpolation(values, 0) == 0.0
    assert parabolic_interpolation(values, 2) == 2.0


def test_lag_bounds_follow_vocal_range():
    """Test that lag bounds are derived from the supported frequency range."""
    estimator = YinPitchEstimator(min_frequency_hz=65.0, max_frequency_hz=1000.0)

    min_lag, max_lag = estimator.lag_bounds(SAMPLE_RATE, 4096)

    assert min_lag == 44
    assert max_lag == 679
    # Bounded by half the frame
    assert estimator.lag_bounds(SAMPLE_RATE, 1024)[1] == 512
