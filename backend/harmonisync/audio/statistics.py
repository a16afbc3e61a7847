"""Thread-safe holder for the latest pipeline statistics snapshot, and its health grade."""
import threading
from typing import Dict, List, Optional
from harmonisync.audio.models import ComponentHealth, ComponentStatistics, PitchTrackingResult


class StatisticsStore:
    """
    Owns the published statistics of one pipeline.

    The frame-processing thread publishes a fresh immutable snapshot after
    every frame; pollers (REST handlers, UI timers) may read from any thread
    and always see one complete snapshot.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot = ComponentStatistics()
        self._latest: Optional[PitchTrackingResult] = None

    def publish(self, snapshot: ComponentStatistics, latest: Optional[PitchTrackingResult] = None) -> None:
        with self._lock:
            self._snapshot = snapshot
            if latest is not None:
                self._latest = latest

    def snapshot(self) -> ComponentStatistics:
        with self._lock:
            return self._snapshot

    def latest(self) -> Optional[PitchTrackingResult]:
        with self._lock:
            return self._latest

    def reset(self) -> None:
        with self._lock:
            self._snapshot = ComponentStatistics()
            self._latest = None


# Grading thresholds
HIGH_NOISE_SNR_DB = -50.0
MIN_VAD_ACCURACY_PERCENT = 70.0
MAX_OUTLIER_RATIO = 0.3

_SEVERITY = {ComponentHealth.EXCELLENT: 0, ComponentHealth.FAIR: 1, ComponentHealth.POOR: 2}


def assess_health(snapshot: ComponentStatistics) -> Dict[str, object]:
    """
    Grade a statistics snapshot.

    Checks the suppressor SNR (once a noise profile exists), the voice
    classifier's rolling accuracy and the stabilizer's outlier ratio. The
    worst finding sets the overall grade.

    Args:
        snapshot: Statistics snapshot of one pipeline

    Returns:
        {"status": grade value, "issues": list of short descriptions}
    """
    status = ComponentHealth.EXCELLENT
    issues: List[str] = []

    def degrade(grade: ComponentHealth, issue: str) -> None:
        nonlocal status
        issues.append(issue)
        if _SEVERITY[grade] > _SEVERITY[status]:
            status = grade

    suppressor = snapshot.noise_suppressor
    if suppressor.get("initialized") and suppressor.get("snr_db", 0.0) < HIGH_NOISE_SNR_DB:
        degrade(ComponentHealth.FAIR, "high noise")

    classifier = snapshot.classifier
    if classifier.get("total_frames", 0) > 0 and classifier.get("accuracy_percent", 100.0) < MIN_VAD_ACCURACY_PERCENT:
        degrade(ComponentHealth.POOR, "voice detection accuracy low")

    stabilizer = snapshot.stabilizer
    processed = stabilizer.get("total_processed", 0)
    if processed and stabilizer.get("outlier_count", 0) / processed > MAX_OUTLIER_RATIO:
        degrade(ComponentHealth.FAIR, "pitch unstable")

    return {"status": status.value, "issues": issues}
