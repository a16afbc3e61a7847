"""Voice activity classification from frame energy and periodicity."""
from collections import deque
from typing import Deque, Dict
import numpy as np
from harmonisync.audio.models import PitchCandidate, VoiceDecision

# Energy score ramps from 0 to 1 over this many dB above the threshold
ENERGY_SCORE_RANGE_DB = 20.0


def frame_rms_db(samples: np.ndarray) -> float:
    """RMS level of a frame in dBFS (-inf guarded to -120 dB)."""
    if samples.size == 0:
        return -120.0
    rms = float(np.sqrt(np.mean(samples * samples)))
    return 20.0 * np.log10(rms + 1e-6)


class VoiceActivityClassifier:
    """
    Decides whether a frame is sung voice or silence/noise.

    A frame is voiced only when it is loud enough *and* periodic: loud
    noise without periodic structure is not voice. The classifier tracks how
    often the two sub-decisions agree as a rolling accuracy figure.
    """

    def __init__(
        self,
        energy_threshold_db: float = -45.0,
        periodicity_threshold: float = 0.6,
        accuracy_window: int = 100,
    ):
        self.energy_threshold_db = energy_threshold_db
        self.periodicity_threshold = periodicity_threshold

        self._agreement: Deque[bool] = deque(maxlen=accuracy_window)
        self._total_frames = 0
        self._voice_frames = 0
        self._last_confidence = 0.0

    def classify(self, samples: np.ndarray, candidate: PitchCandidate) -> VoiceDecision:
        """
        Classify one cleaned frame.

        Args:
            samples: Cleaned float samples
            candidate: Estimator output for the same frame

        Returns:
            VoiceDecision with a continuous confidence in [0, 1]
        """
        self._total_frames += 1

        if samples.size == 0:
            decision = VoiceDecision.unvoiced()
        else:
            level_db = frame_rms_db(samples)
            energy_voiced = level_db > self.energy_threshold_db
            periodicity = candidate.periodicity_confidence if candidate.has_pitch else 0.0
            periodic_voiced = periodicity >= self.periodicity_threshold

            energy_score = float(np.clip((level_db - self.energy_threshold_db) / ENERGY_SCORE_RANGE_DB, 0.0, 1.0))
            decision = VoiceDecision(
                is_voiced=energy_voiced and periodic_voiced,
                confidence=float(np.clip(energy_score * periodicity, 0.0, 1.0)),
                energy_voiced=energy_voiced,
                periodic_voiced=periodic_voiced,
            )

        self._agreement.append(decision.energy_voiced == decision.periodic_voiced)
        if decision.is_voiced:
            self._voice_frames += 1
        self._last_confidence = decision.confidence
        return decision

    @property
    def accuracy_percent(self) -> float:
        if not self._agreement:
            return 0.0
        return 100.0 * sum(self._agreement) / len(self._agreement)

    def reset(self) -> None:
        self._agreement.clear()
        self._total_frames = 0
        self._voice_frames = 0
        self._last_confidence = 0.0

    def statistics(self) -> Dict[str, object]:
        return {
            "voice_frames": self._voice_frames,
            "total_frames": self._total_frames,
            "accuracy_percent": round(self.accuracy_percent, 2),
            "last_confidence": round(self._last_confidence, 4),
        }
