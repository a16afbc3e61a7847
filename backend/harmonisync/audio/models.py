"""Audio data models and structures."""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union
import numpy as np


@dataclass(frozen=True)
class AudioFrame:
    """Represents a single captured audio frame with metadata."""
    samples: np.ndarray  # float samples normalised to [-1, 1]
    sample_rate: int
    timestamp: float = 0.0  # Unix timestamp when frame was received
    stream_id: str = ""

    def __post_init__(self):
        """Validate frame data and freeze the sample buffer."""
        samples = np.asarray(self.samples)
        if samples.ndim != 1:
            raise ValueError(f"Expected mono (1D array), got shape {samples.shape}")
        if not np.issubdtype(samples.dtype, np.number):
            raise ValueError(f"Expected numeric samples, got {samples.dtype}")
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")

        frozen = np.array(samples, dtype=np.float64, copy=True)
        frozen.setflags(write=False)
        object.__setattr__(self, "samples", frozen)

    @property
    def duration(self) -> float:
        """Frame duration in seconds (the real-time processing deadline)."""
        return len(self.samples) / self.sample_rate


@dataclass(frozen=True)
class PitchCandidate:
    """Fundamental frequency estimate for one frame."""
    frequency_hz: float = 0.0
    periodicity_confidence: float = 0.0

    @classmethod
    def none(cls) -> "PitchCandidate":
        """The "no usable candidate" value."""
        return cls(0.0, 0.0)

    @property
    def has_pitch(self) -> bool:
        return self.frequency_hz > 0.0 and self.periodicity_confidence > 0.0


@dataclass(frozen=True)
class VoiceDecision:
    """Voiced/unvoiced classification for one frame."""
    is_voiced: bool = False
    confidence: float = 0.0
    energy_voiced: bool = False
    periodic_voiced: bool = False

    @classmethod
    def unvoiced(cls) -> "VoiceDecision":
        return cls()


class StabilizerState(str, Enum):
    """Note-lock state of the pitch stabilizer."""
    WARMING_UP = "warming_up"
    TRACKING = "tracking"
    LOCKED = "locked"


class ComponentHealth(str, Enum):
    """Overall grade of the pipeline components for one stream."""
    EXCELLENT = "excellent"
    FAIR = "fair"
    POOR = "poor"


@dataclass(frozen=True)
class PitchState:
    """Output of the pitch stabilizer after one update (or the held value)."""
    state: StabilizerState = StabilizerState.WARMING_UP
    emitted_hz: Optional[float] = None
    note: Optional[str] = None
    consecutive_stable_frames: int = 0
    required_frames: int = 1
    accepted: bool = False
    outlier: bool = False

    @property
    def is_locked(self) -> bool:
        return self.state is StabilizerState.LOCKED

    @property
    def locked_note(self) -> Optional[str]:
        return self.note if self.is_locked else None


@dataclass(frozen=True)
class PitchTrackingResult:
    """Everything the pipeline knows after processing one frame."""
    timestamp: float
    stream_id: str
    candidate: PitchCandidate
    voice: VoiceDecision
    pitch: PitchState
    snr_db: float


Counter = Union[int, float, bool, str]


def _freeze(values: Optional[Mapping[str, Counter]]) -> Mapping[str, Counter]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class ComponentStatistics:
    """
    Read-only snapshot of every component's counters.

    Instances are never mutated; the pipeline publishes a new one per frame.
    """
    noise_suppressor: Mapping[str, Counter] = field(default_factory=dict)
    classifier: Mapping[str, Counter] = field(default_factory=dict)
    estimator: Mapping[str, Counter] = field(default_factory=dict)
    stabilizer: Mapping[str, Counter] = field(default_factory=dict)
    pipeline: Mapping[str, Counter] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("noise_suppressor", "classifier", "estimator", "stabilizer", "pipeline"):
            object.__setattr__(self, name, _freeze(getattr(self, name)))

    def as_dict(self) -> dict:
        """Plain (JSON-serialisable) copy of the snapshot."""
        return {
            "noise_suppressor": dict(self.noise_suppressor),
            "classifier": dict(self.classifier),
            "estimator": dict(self.estimator),
            "stabilizer": dict(self.stabilizer),
            "pipeline": dict(self.pipeline),
        }
