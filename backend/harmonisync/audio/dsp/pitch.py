"""Fundamental frequency estimation with the YIN algorithm."""
import math
from typing import Dict, Optional, Tuple
import numpy as np
from harmonisync.audio.models import PitchCandidate
from harmonisync.core.logging import logger


class YinPitchEstimator:
    """
    Estimates the sung fundamental frequency of a cleaned frame.

    Steps:
    1. Silence gate on frame RMS
    2. Difference function d(tau) over the vocal lag range
    3. Cumulative-mean-normalised difference d'(tau)
    4. First dip under the absolute threshold (else the global minimum)
    5. Parabolic interpolation for sub-sample lag precision
    6. Range check; out-of-range results become "no candidate"
    """

    def __init__(
        self,
        min_frequency_hz: float = 65.0,
        max_frequency_hz: float = 1000.0,
        threshold: float = 0.10,
        silence_floor: float = 1e-4,
    ):
        self.min_frequency_hz = min_frequency_hz
        self.max_frequency_hz = max_frequency_hz
        self.threshold = threshold
        self.silence_floor = silence_floor

        self._frames = 0
        self._candidates = 0
        self._silent_frames = 0
        self._out_of_range = 0
        self._last_frequency = 0.0
        self._last_confidence = 0.0

    def lag_bounds(self, sample_rate: int, frame_length: int) -> Tuple[int, int]:
        """
        Lag search range for a frame.

        Returns:
            (min_lag, max_lag), inclusive; max_lag < min_lag when the frame is too short
        """
        min_lag = max(2, int(math.floor(sample_rate / self.max_frequency_hz)))
        max_lag = int(math.ceil(sample_rate / self.min_frequency_hz))
        # Keep at least half the frame as the integration window
        max_lag = min(max_lag, frame_length // 2)
        return min_lag, max_lag

    def estimate(self, samples: np.ndarray, sample_rate: int) -> PitchCandidate:
        """
        Estimate the fundamental frequency of one frame.

        Args:
            samples: Cleaned float samples
            sample_rate: Sample rate in Hz

        Returns:
            PitchCandidate; PitchCandidate.none() when nothing usable was found
        """
        self._frames += 1
        candidate = self._estimate(samples, sample_rate)
        if candidate.has_pitch:
            self._candidates += 1
        self._last_frequency = candidate.frequency_hz
        self._last_confidence = candidate.periodicity_confidence
        return candidate

    def _estimate(self, samples: np.ndarray, sample_rate: int) -> PitchCandidate:
        n = len(samples)
        if n < 4:
            self._silent_frames += 1
            return PitchCandidate.none()

        rms = float(np.sqrt(np.mean(samples ** 2)))
        if rms < self.silence_floor:
            self._silent_frames += 1
            return PitchCandidate.none()

        min_lag, max_lag = self.lag_bounds(sample_rate, n)
        # Need one lag on each side of a minimum for interpolation
        if max_lag < min_lag + 2:
            logger.debug(f"Frame of {n} samples too short for lags {min_lag}-{max_lag}")
            return PitchCandidate.none()

        cmndf = cumulative_mean_normalized_difference(samples, max_lag)
        tau = self._pick_lag(cmndf, min_lag, max_lag)
        if tau is None:
            return PitchCandidate.none()

        confidence = float(np.clip(1.0 - cmndf[tau], 0.0, 1.0))
        if confidence <= 0.0:
            return PitchCandidate.none()

        refined_tau = parabolic_interpolation(cmndf, tau)
        if not math.isfinite(refined_tau) or refined_tau <= 0:
            return PitchCandidate.none()

        frequency = sample_rate / refined_tau
        if not self.min_frequency_hz <= frequency <= self.max_frequency_hz:
            self._out_of_range += 1
            return PitchCandidate.none()

        return PitchCandidate(frequency_hz=float(frequency), periodicity_confidence=confidence)

    def _pick_lag(self, cmndf: np.ndarray, min_lag: int, max_lag: int) -> Optional[int]:
        """First local minimum under the threshold, else the global minimum."""
        # Interpolation needs tau - 1 and tau + 1
        search = cmndf[min_lag:max_lag]
        if search.size == 0:
            return None

        below = np.nonzero(search < self.threshold)[0]
        if below.size > 0:
            tau = min_lag + int(below[0])
            # Walk down the dip to its local minimum
            while tau + 1 < max_lag and cmndf[tau + 1] < cmndf[tau]:
                tau += 1
            return tau

        return min_lag + int(np.argmin(search))

    def reset(self) -> None:
        self._frames = 0
        self._candidates = 0
        self._silent_frames = 0
        self._out_of_range = 0
        self._last_frequency = 0.0
        self._last_confidence = 0.0

    def statistics(self) -> Dict[str, object]:
        return {
            "frames": self._frames,
            "candidates": self._candidates,
            "silent_frames": self._silent_frames,
            "out_of_range": self._out_of_range,
            "last_frequency_hz": round(self._last_frequency, 3),
            "last_confidence": round(self._last_confidence, 4),
        }


def difference_function(samples: np.ndarray, max_lag: int) -> np.ndarray:
    """
    YIN difference function d(tau) for tau in [0, max_lag].

    d(tau) = sum_j (x[j] - x[j + tau])^2 over a fixed window of
    len(samples) - max_lag samples. Computed as
    energy(0) + energy(tau) - 2 * autocorrelation(tau), with the
    autocorrelation done via FFT.
    """
    x = np.asarray(samples, dtype=np.float64)
    window = len(x) - max_lag

    squares = np.concatenate(([0.0], np.cumsum(x * x)))
    lags = np.arange(max_lag + 1)
    energy_start = squares[window]
    energy_shifted = squares[lags + window] - squares[lags]

    fft_size = 1 << int(math.ceil(math.log2(len(x) + window)))
    spectrum = np.fft.rfft(x, fft_size)
    head = np.fft.rfft(x[:window], fft_size)
    autocorr = np.fft.irfft(np.conj(head) * spectrum, fft_size)[: max_lag + 1]

    diff = energy_start + energy_shifted - 2.0 * autocorr
    diff[0] = 0.0
    return np.maximum(diff, 0.0)


def cumulative_mean_normalized_difference(samples: np.ndarray, max_lag: int) -> np.ndarray:
    """d'(tau) = d(tau) / ((1 / tau) * sum_{j=1..tau} d(j)), with d'(0) = 1."""
    diff = difference_function(samples, max_lag)
    cmndf = np.ones_like(diff)
    running = np.cumsum(diff[1:])
    taus = np.arange(1, len(diff))
    valid = running > 0
    cmndf[1:][valid] = diff[1:][valid] * taus[valid] / running[valid]
    return cmndf


def parabolic_interpolation(values: np.ndarray, index: int) -> float:
    """Sub-sample position of the minimum around values[index]."""
    if index <= 0 or index >= len(values) - 1:
        return float(index)

    left, center, right = values[index - 1], values[index], values[index + 1]
    denom = left - 2.0 * center + right
    if abs(denom) < 1e-12:
        return float(index)

    shift = 0.5 * (left - right) / denom
    # A true parabola vertex lies between the neighbours
    shift = max(-1.0, min(1.0, shift))
    return index + shift
