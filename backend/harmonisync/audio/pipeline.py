"""Main pitch tracking pipeline orchestrator."""
import threading
import time
from typing import Optional
import numpy as np
from harmonisync.audio.dsp.noise import NOISE_FLOOR_DB, WienerNoiseSuppressor
from harmonisync.audio.dsp.pitch import YinPitchEstimator
from harmonisync.audio.dsp.stabilizer import NoteConverter, PitchStabilizer
from harmonisync.audio.dsp.vad import VoiceActivityClassifier
from harmonisync.audio.models import (
    AudioFrame,
    ComponentStatistics,
    PitchCandidate,
    PitchTrackingResult,
    VoiceDecision,
)
from harmonisync.audio.notes import frequency_to_note
from harmonisync.audio.statistics import StatisticsStore
from harmonisync.core.config import PipelineConfig, adaptive_required_frames
from harmonisync.core.logging import logger


def sanitize_samples(samples: np.ndarray) -> np.ndarray:
    """Replace NaN/inf with silence and clip to [-1, 1]."""
    clean = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    return np.clip(clean, -1.0, 1.0)


class PitchPipeline:
    """
    Runs one audio stream through the pitch tracking stages.

    Per frame:
    1. Noise suppression (noise profile fed by the previous frame's voice decision)
    2. YIN fundamental frequency estimation
    3. Voice activity classification
    4. Pitch stabilization (voiced frames with a candidate only)

    Frames are processed synchronously on the caller's thread. Statistics are
    published as an immutable snapshot that other threads may poll.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        note_converter: NoteConverter = frequency_to_note,
        stream_id: str = "",
    ):
        """
        Args:
            config: Pipeline tunables (validated on construction)
            note_converter: Maps a frequency to the nearest note name
            stream_id: Identifier used in log messages
        """
        self.config = config or PipelineConfig()
        self.stream_id = stream_id

        cfg = self.config
        self.noise_suppressor = WienerNoiseSuppressor(
            strength=cfg.filter_strength,
            noise_ema_alpha=cfg.noise_ema_alpha,
            gain_floor=cfg.gain_floor,
            default_gain=cfg.default_gain,
        )
        self.estimator = YinPitchEstimator(
            min_frequency_hz=cfg.min_frequency_hz,
            max_frequency_hz=cfg.max_frequency_hz,
            threshold=cfg.yin_threshold,
            silence_floor=cfg.silence_floor,
        )
        self.classifier = VoiceActivityClassifier(
            energy_threshold_db=cfg.energy_threshold_db,
            periodicity_threshold=cfg.periodicity_threshold,
            accuracy_window=cfg.accuracy_window,
        )
        self.stabilizer = PitchStabilizer(
            note_converter=note_converter,
            min_samples=cfg.min_samples,
            base_threshold_multiplier=cfg.base_threshold_multiplier,
            adaptive_threshold_coefficient=cfg.adaptive_threshold_coefficient,
            smoothing_factor=cfg.smoothing_factor,
            required_frames=cfg.resolved_required_frames,
            min_deviation_cents=cfg.min_deviation_cents,
            reacquire_after=cfg.reacquire_after,
        )
        self.statistics_store = StatisticsStore()

        # Voice decision of the previous frame; drives the noise profile update
        self._previous_voiced: Optional[bool] = None
        self._counter_lock = threading.Lock()
        self._frames_processed = 0
        self._frames_dropped = 0
        self._processing_errors = 0
        self._publish(None)

    def process_frame(self, frame: AudioFrame) -> PitchTrackingResult:
        """
        Process a single frame through all stages.

        Never raises for a well-formed AudioFrame: on an unexpected error the
        frame yields a neutral result and the error counter is incremented.

        Args:
            frame: Captured audio frame

        Returns:
            Result for this frame (also available via `latest`)
        """
        start_time = time.perf_counter()

        try:
            result = self._run_stages(frame)
        except Exception as e:
            logger.error(f"Error processing frame for stream {frame.stream_id or self.stream_id}: {e}", exc_info=True)
            with self._counter_lock:
                self._processing_errors += 1
            # A failed frame must never be folded into the noise profile
            self._previous_voiced = None
            result = PitchTrackingResult(
                timestamp=frame.timestamp,
                stream_id=frame.stream_id,
                candidate=PitchCandidate.none(),
                voice=VoiceDecision.unvoiced(),
                pitch=self.stabilizer.current(),
                snr_db=NOISE_FLOOR_DB,
            )

        with self._counter_lock:
            self._frames_processed += 1
        self._publish(result)

        processing_time = time.perf_counter() - start_time
        if frame.duration > 0 and processing_time > frame.duration:
            logger.warning(
                f"Frame processing took {processing_time * 1000:.2f}ms "
                f"(deadline: {frame.duration * 1000:.2f}ms)"
            )

        return result

    def _run_stages(self, frame: AudioFrame) -> PitchTrackingResult:
        samples = sanitize_samples(frame.samples)

        # Step 1: Noise suppression with one-frame-delayed voice feedback
        previous_unvoiced = self._previous_voiced is False
        cleaned = self.noise_suppressor.process(samples, previous_frame_unvoiced=previous_unvoiced)

        # Step 2: Fundamental frequency estimation
        candidate = self.estimator.estimate(cleaned, frame.sample_rate)

        # Step 3: Voice activity classification
        voice = self.classifier.classify(cleaned, candidate)
        self._previous_voiced = voice.is_voiced

        # Step 4: Stabilization; unvoiced frames leave the held value untouched
        if voice.is_voiced and candidate.has_pitch:
            pitch = self.stabilizer.update(candidate.frequency_hz)
        else:
            pitch = self.stabilizer.current()

        return PitchTrackingResult(
            timestamp=frame.timestamp,
            stream_id=frame.stream_id,
            candidate=candidate,
            voice=voice,
            pitch=pitch,
            snr_db=self.noise_suppressor.snr_db,
        )

    def record_dropped_frame(self) -> None:
        """Count a frame the transport dropped because the pipeline was busy."""
        with self._counter_lock:
            self._frames_dropped += 1
        self._publish(None)

    def update_tempo(self, tempo_bpm: float, note_duration_beats: float) -> int:
        """
        Re-derive the lock threshold for a new tempo / note length.

        Returns:
            The new required stable frame count
        """
        required = adaptive_required_frames(tempo_bpm, note_duration_beats)
        self.stabilizer.set_required_frames(required)
        self._publish(None)
        logger.debug(f"Stream {self.stream_id}: {tempo_bpm} bpm, {note_duration_beats} beats -> {required} frames to lock")
        return required

    def statistics(self) -> ComponentStatistics:
        """Latest merged statistics snapshot (safe to call from any thread)."""
        return self.statistics_store.snapshot()

    @property
    def latest(self) -> Optional[PitchTrackingResult]:
        """Result of the most recently processed frame."""
        return self.statistics_store.latest()

    def reset(self) -> None:
        """Start a fresh session: clears every component and counter."""
        self.noise_suppressor.reset()
        self.estimator.reset()
        self.classifier.reset()
        self.stabilizer.reset()
        self._previous_voiced = None
        with self._counter_lock:
            self._frames_processed = 0
            self._frames_dropped = 0
            self._processing_errors = 0
        self.statistics_store.reset()
        self._publish(None)

    def _publish(self, result: Optional[PitchTrackingResult]) -> None:
        with self._counter_lock:
            pipeline_stats = {
                "frames_processed": self._frames_processed,
                "frames_dropped": self._frames_dropped,
                "processing_errors": self._processing_errors,
            }
        snapshot = ComponentStatistics(
            noise_suppressor=self.noise_suppressor.statistics(),
            classifier=self.classifier.statistics(),
            estimator=self.estimator.statistics(),
            stabilizer=self.stabilizer.statistics(),
            pipeline=pipeline_stats,
        )
        self.statistics_store.publish(snapshot, result)
