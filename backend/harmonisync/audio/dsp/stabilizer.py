"""Pitch stabilization: statistical outlier rejection, smoothing and note lock."""
import math
from collections import deque
from typing import Callable, Deque, Dict, Optional
from harmonisync.audio.models import PitchState, StabilizerState
from harmonisync.core.logging import logger

NoteConverter = Callable[[float], str]


class RunningPitchWindow:
    """Sliding window of accepted pitches with incrementally maintained mean/std."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._values: Deque[float] = deque()
        self._sum = 0.0
        self._sum_sq = 0.0

    def __len__(self) -> int:
        return len(self._values)

    @property
    def is_full(self) -> bool:
        return len(self._values) >= self.capacity

    def push(self, value: float) -> None:
        """Append a value, evicting the oldest one when at capacity."""
        if len(self._values) >= self.capacity:
            evicted = self._values.popleft()
            self._sum -= evicted
            self._sum_sq -= evicted * evicted
        self._values.append(value)
        self._sum += value
        self._sum_sq += value * value

    @property
    def mean(self) -> float:
        if not self._values:
            return 0.0
        return self._sum / len(self._values)

    @property
    def std(self) -> float:
        """Population standard deviation."""
        n = len(self._values)
        if n < 2:
            return 0.0
        mean = self._sum / n
        variance = self._sum_sq / n - mean * mean
        return math.sqrt(max(variance, 0.0))

    def clear(self) -> None:
        self._values.clear()
        self._sum = 0.0
        self._sum_sq = 0.0


class PitchStabilizer:
    """
    Turns a noisy stream of pitch candidates into a debounced current note.

    Candidates far from the recent window mean are rejected as outliers
    (octave jumps, transient spikes) and the previous smoothed value is held.
    Accepted candidates are blended in with exponential smoothing. A note
    counts as locked once enough consecutive updates map to the same note.
    """

    def __init__(
        self,
        note_converter: NoteConverter,
        min_samples: int = 15,
        base_threshold_multiplier: float = 4.0,
        adaptive_threshold_coefficient: float = 0.2,
        smoothing_factor: float = 0.3,
        required_frames: int = 3,
        min_deviation_cents: float = 5.0,
        reacquire_after: int = 5,
    ):
        """
        Args:
            note_converter: Maps a frequency in Hz to its nearest note name
            min_samples: Window size and warm-up length
            base_threshold_multiplier: Outlier threshold in standard deviations
            adaptive_threshold_coefficient: Extra threshold per Hz of deviation
            smoothing_factor: Weight of a new candidate in the emitted value
            required_frames: Consecutive agreeing updates needed for a lock
            min_deviation_cents: Floor on the deviation used for the outlier test,
                so a perfectly steady window does not reject sub-cent jitter
            reacquire_after: Consecutive rejections after which the next
                candidate is accepted as a note change
        """
        self.note_converter = note_converter
        self.min_samples = min_samples
        self.base_threshold_multiplier = base_threshold_multiplier
        self.adaptive_threshold_coefficient = adaptive_threshold_coefficient
        self.smoothing_factor = smoothing_factor
        self.min_deviation_ratio = 2.0 ** (min_deviation_cents / 1200.0) - 1.0
        self.reacquire_after = reacquire_after

        self._required_frames = required_frames
        self._window = RunningPitchWindow(min_samples)
        self._emitted: Optional[float] = None
        self._tracked_note: Optional[str] = None
        self._consecutive_stable = 0
        self._consecutive_outliers = 0
        self._outlier_count = 0
        self._total_processed = 0
        self._reacquisitions = 0

    @property
    def window(self) -> RunningPitchWindow:
        return self._window

    @property
    def required_frames(self) -> int:
        return self._required_frames

    def set_required_frames(self, required_frames: int) -> None:
        """Change the lock threshold at runtime (e.g. on a tempo change)."""
        if required_frames <= 0:
            raise ValueError(f"required_frames must be positive, got {required_frames}")
        self._required_frames = required_frames
        self._consecutive_stable = min(self._consecutive_stable, required_frames)

    @property
    def state(self) -> StabilizerState:
        if not self._window.is_full:
            return StabilizerState.WARMING_UP
        if self._tracked_note is not None and self._consecutive_stable >= self._required_frames:
            return StabilizerState.LOCKED
        return StabilizerState.TRACKING

    def outlier_threshold(self) -> float:
        """Current maximum allowed distance from the window mean in Hz."""
        sigma = max(self._window.std, self._window.mean * self.min_deviation_ratio)
        return sigma * (self.base_threshold_multiplier + self.adaptive_threshold_coefficient * sigma)

    def is_outlier(self, frequency: float) -> bool:
        if not self._window.is_full:
            return False
        return abs(frequency - self._window.mean) > self.outlier_threshold()

    def update(self, frequency: float) -> PitchState:
        """
        Feed one voiced pitch candidate.

        Args:
            frequency: Candidate frequency in Hz (finite, > 0)

        Returns:
            The stabilizer output after this candidate

        Raises:
            Whatever note_converter raises; the window and held output are
            left exactly as they were before the call
        """
        self._total_processed += 1

        if not math.isfinite(frequency) or frequency <= 0:
            logger.debug(f"Ignoring invalid pitch candidate {frequency}")
            return self.current()

        reacquiring = False
        if self.is_outlier(frequency):
            if self._consecutive_outliers + 1 < self.reacquire_after:
                self._consecutive_outliers += 1
                self._outlier_count += 1
                self._consecutive_stable = 0
                return self.current(outlier=True)
            reacquiring = True

        if self._emitted is None:
            emitted = frequency
        else:
            a = self.smoothing_factor
            emitted = a * frequency + (1.0 - a) * self._emitted

        # Nothing is committed until the converter has succeeded
        note = self.note_converter(emitted)

        if reacquiring:
            logger.debug(
                f"Re-acquiring pitch at {frequency:.1f} Hz after {self._consecutive_outliers + 1} rejections"
            )
            self._reacquisitions += 1
        self._consecutive_outliers = 0
        self._window.push(frequency)
        self._emitted = emitted

        if note == self._tracked_note:
            self._consecutive_stable = min(self._consecutive_stable + 1, self._required_frames)
        else:
            self._tracked_note = note
            self._consecutive_stable = 0

        return self.current(accepted=True)

    def current(self, accepted: bool = False, outlier: bool = False) -> PitchState:
        """Held output without feeding a candidate."""
        return PitchState(
            state=self.state,
            emitted_hz=self._emitted,
            note=self._tracked_note,
            consecutive_stable_frames=self._consecutive_stable,
            required_frames=self._required_frames,
            accepted=accepted,
            outlier=outlier,
        )

    def reset(self) -> None:
        """Full reset; only used when the owning pipeline is reset."""
        self._window.clear()
        self._emitted = None
        self._tracked_note = None
        self._consecutive_stable = 0
        self._consecutive_outliers = 0
        self._outlier_count = 0
        self._total_processed = 0
        self._reacquisitions = 0

    def statistics(self) -> Dict[str, object]:
        return {
            "outlier_count": self._outlier_count,
            "total_processed": self._total_processed,
            "smoothing_factor": self.smoothing_factor,
            "consecutive_stable_frames": self._consecutive_stable,
            "required_frames": self._required_frames,
            "reacquisitions": self._reacquisitions,
            "window_size": len(self._window),
            "state": self.state.value,
        }
