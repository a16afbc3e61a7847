"""Configuration settings for the HarmoniSync pitch tracking backend."""
import math
from dataclasses import dataclass
from typing import Optional

from pydantic_settings import BaseSettings


class ConfigurationError(ValueError):
    """Raised when a pipeline is constructed with an invalid configuration."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Audio settings
    sample_rate: int = 44100  # Hz
    frame_size: int = 2048  # samples per frame (~46 ms at 44.1 kHz)
    channels: int = 1  # mono
    bit_depth: int = 16  # 16-bit PCM

    # Noise suppressor
    filter_strength: float = 0.5
    noise_ema_alpha: float = 0.05
    gain_floor: float = 0.15

    # Frequency estimator
    min_frequency_hz: float = 65.0
    max_frequency_hz: float = 1000.0
    yin_threshold: float = 0.10

    # Voice activity classifier
    energy_threshold_db: float = -45.0
    periodicity_threshold: float = 0.6

    # Pitch stabilizer
    min_samples: int = 15
    base_threshold_multiplier: float = 4.0
    adaptive_threshold_coefficient: float = 0.2
    smoothing_factor: float = 0.3
    required_stable_frames: Optional[int] = None  # None = derived from tempo
    tempo_bpm: float = 120.0
    note_duration_beats: float = 4.0

    # Streaming settings
    max_concurrent_streams: int = 10
    max_pending_frames: int = 4  # frames waiting beyond this are dropped
    pitch_update_interval_ms: int = 50

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


def adaptive_required_frames(tempo_bpm: float, note_duration_beats: float) -> int:
    """
    Number of agreeing frames needed before a note is reported as locked.

    Short notes lock after a single frame so fast passages are not missed;
    long notes can afford more confirmation.

    Args:
        tempo_bpm: Exercise tempo in beats per minute
        note_duration_beats: Length of the current note in beats

    Returns:
        Required consecutive stable frames, between 1 and 4
    """
    if tempo_bpm <= 0 or note_duration_beats <= 0:
        raise ConfigurationError(
            f"tempo and note duration must be positive, got {tempo_bpm} bpm / {note_duration_beats} beats"
        )

    beat_ms = 60000.0 / tempo_bpm
    note_ms = note_duration_beats * beat_ms

    if note_ms < 1000:
        frames = 1
    elif note_ms < 2000:
        frames = 2
    else:
        frames = 3

    if tempo_bpm > 160:
        frames -= 1
    elif tempo_bpm < 80:
        frames += 1

    return max(1, min(4, frames))


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for one pitch tracking pipeline, validated once at construction."""

    # Noise suppressor
    filter_strength: float = 0.5
    noise_ema_alpha: float = 0.05
    gain_floor: float = 0.15
    default_gain: float = 1.0

    # Frequency estimator
    min_frequency_hz: float = 65.0
    max_frequency_hz: float = 1000.0
    yin_threshold: float = 0.10
    silence_floor: float = 1e-4  # RMS below this is silence

    # Voice activity classifier
    energy_threshold_db: float = -45.0
    periodicity_threshold: float = 0.6
    accuracy_window: int = 100

    # Pitch stabilizer
    min_samples: int = 15
    base_threshold_multiplier: float = 4.0
    adaptive_threshold_coefficient: float = 0.2
    min_deviation_cents: float = 5.0
    smoothing_factor: float = 0.3
    reacquire_after: int = 5
    required_stable_frames: Optional[int] = None
    tempo_bpm: float = 120.0
    note_duration_beats: float = 4.0

    def __post_init__(self):
        """Validate every tunable; nothing is re-checked per frame."""
        for name in (
            "filter_strength", "noise_ema_alpha", "gain_floor", "default_gain",
            "min_frequency_hz", "max_frequency_hz", "yin_threshold", "silence_floor",
            "energy_threshold_db", "periodicity_threshold",
            "base_threshold_multiplier", "adaptive_threshold_coefficient",
            "min_deviation_cents", "smoothing_factor", "tempo_bpm", "note_duration_beats",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"{name} must be a finite number, got {value!r}")

        if not 0.0 <= self.filter_strength <= 1.0:
            raise ConfigurationError(f"filter_strength must be in [0, 1], got {self.filter_strength}")
        if not 0.0 < self.noise_ema_alpha <= 1.0:
            raise ConfigurationError(f"noise_ema_alpha must be in (0, 1], got {self.noise_ema_alpha}")
        if not 0.0 <= self.gain_floor < 1.0:
            raise ConfigurationError(f"gain_floor must be in [0, 1), got {self.gain_floor}")
        if not 0.0 < self.default_gain <= 1.0:
            raise ConfigurationError(f"default_gain must be in (0, 1], got {self.default_gain}")

        if self.min_frequency_hz <= 0 or self.max_frequency_hz <= self.min_frequency_hz:
            raise ConfigurationError(
                f"invalid vocal range {self.min_frequency_hz}-{self.max_frequency_hz} Hz"
            )
        if not 0.0 < self.yin_threshold < 1.0:
            raise ConfigurationError(f"yin_threshold must be in (0, 1), got {self.yin_threshold}")
        if self.silence_floor < 0:
            raise ConfigurationError(f"silence_floor must be >= 0, got {self.silence_floor}")

        if not 0.0 <= self.periodicity_threshold <= 1.0:
            raise ConfigurationError(
                f"periodicity_threshold must be in [0, 1], got {self.periodicity_threshold}"
            )
        if not isinstance(self.accuracy_window, int) or self.accuracy_window <= 0:
            raise ConfigurationError(f"accuracy_window must be a positive int, got {self.accuracy_window!r}")

        if not isinstance(self.min_samples, int) or self.min_samples <= 0:
            raise ConfigurationError(f"min_samples must be a positive int, got {self.min_samples!r}")
        if self.base_threshold_multiplier <= 0:
            raise ConfigurationError(
                f"base_threshold_multiplier must be > 0, got {self.base_threshold_multiplier}"
            )
        if self.adaptive_threshold_coefficient < 0:
            raise ConfigurationError(
                f"adaptive_threshold_coefficient must be >= 0, got {self.adaptive_threshold_coefficient}"
            )
        if self.min_deviation_cents < 0:
            raise ConfigurationError(f"min_deviation_cents must be >= 0, got {self.min_deviation_cents}")
        if not 0.0 < self.smoothing_factor <= 1.0:
            raise ConfigurationError(f"smoothing_factor must be in (0, 1], got {self.smoothing_factor}")
        if not isinstance(self.reacquire_after, int) or self.reacquire_after <= 0:
            raise ConfigurationError(f"reacquire_after must be a positive int, got {self.reacquire_after!r}")
        if self.required_stable_frames is not None and (
            not isinstance(self.required_stable_frames, int) or self.required_stable_frames <= 0
        ):
            raise ConfigurationError(
                f"required_stable_frames must be a positive int, got {self.required_stable_frames!r}"
            )
        # Raises ConfigurationError on a non-positive tempo or duration
        adaptive_required_frames(self.tempo_bpm, self.note_duration_beats)

    @property
    def resolved_required_frames(self) -> int:
        """Explicit required_stable_frames, or the tempo-derived default."""
        if self.required_stable_frames is not None:
            return self.required_stable_frames
        return adaptive_required_frames(self.tempo_bpm, self.note_duration_beats)

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "PipelineConfig":
        """Build a pipeline configuration from application settings."""
        return cls(
            filter_strength=app_settings.filter_strength,
            noise_ema_alpha=app_settings.noise_ema_alpha,
            gain_floor=app_settings.gain_floor,
            min_frequency_hz=app_settings.min_frequency_hz,
            max_frequency_hz=app_settings.max_frequency_hz,
            yin_threshold=app_settings.yin_threshold,
            energy_threshold_db=app_settings.energy_threshold_db,
            periodicity_threshold=app_settings.periodicity_threshold,
            min_samples=app_settings.min_samples,
            base_threshold_multiplier=app_settings.base_threshold_multiplier,
            adaptive_threshold_coefficient=app_settings.adaptive_threshold_coefficient,
            smoothing_factor=app_settings.smoothing_factor,
            required_stable_frames=app_settings.required_stable_frames,
            tempo_bpm=app_settings.tempo_bpm,
            note_duration_beats=app_settings.note_duration_beats,
        )
