"""Service for managing per-stream pitch tracking sessions."""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from harmonisync.audio.buffers import StreamBuffer
from harmonisync.audio.models import ComponentStatistics, PitchTrackingResult
from harmonisync.audio.notes import NoteTarget
from harmonisync.audio.pipeline import PitchPipeline
from harmonisync.audio.statistics import assess_health
from harmonisync.core.config import PipelineConfig, settings
from harmonisync.core.logging import logger


@dataclass
class PitchSession:
    """One connected stream: its pipeline and its inbound frame buffer."""
    stream_id: str
    pipeline: PitchPipeline
    buffer: StreamBuffer
    created_at: float = field(default_factory=time.time)
    last_locked_note: Optional[str] = None
    target: Optional[NoteTarget] = None


@dataclass(frozen=True)
class SessionSummary:
    """Session-level aggregates handed to practice-history persistence."""
    stream_id: str
    duration_seconds: float
    frames_processed: int
    frames_dropped: int
    voiced_ratio: float
    outlier_ratio: float
    last_locked_note: Optional[str]
    health: str

    @classmethod
    def from_statistics(cls, session: PitchSession, stats: ComponentStatistics) -> "SessionSummary":
        total_frames = stats.classifier.get("total_frames", 0)
        voice_frames = stats.classifier.get("voice_frames", 0)
        processed = stats.stabilizer.get("total_processed", 0)
        outliers = stats.stabilizer.get("outlier_count", 0)
        return cls(
            stream_id=session.stream_id,
            duration_seconds=round(time.time() - session.created_at, 2),
            frames_processed=stats.pipeline.get("frames_processed", 0),
            frames_dropped=stats.pipeline.get("frames_dropped", 0),
            voiced_ratio=round(voice_frames / total_frames, 4) if total_frames else 0.0,
            outlier_ratio=round(outliers / processed, 4) if processed else 0.0,
            last_locked_note=session.last_locked_note,
            health=assess_health(stats)["status"],
        )


class TooManyStreamsError(RuntimeError):
    """Raised when max_concurrent_streams sessions are already open."""


class SessionService:
    """Manages pitch tracking sessions for all active streams."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        """
        Initialize the session service.

        Args:
            config: Pipeline configuration for new sessions (defaults to settings)
        """
        self._config = config
        self._sessions: Dict[str, PitchSession] = {}
        self._lock = asyncio.Lock()

    def _pipeline_config(self) -> PipelineConfig:
        if self._config is None:
            # Validated once; a bad environment fails here, not per frame
            self._config = PipelineConfig.from_settings(settings)
        return self._config

    async def open_session(self, stream_id: str) -> PitchSession:
        """
        Create a session for a new stream.

        Raises:
            TooManyStreamsError: If the concurrent stream limit is reached
        """
        async with self._lock:
            if stream_id in self._sessions:
                return self._sessions[stream_id]
            if len(self._sessions) >= settings.max_concurrent_streams:
                raise TooManyStreamsError(
                    f"{len(self._sessions)} streams already active (max {settings.max_concurrent_streams})"
                )
            session = PitchSession(
                stream_id=stream_id,
                pipeline=PitchPipeline(self._pipeline_config(), stream_id=stream_id),
                buffer=StreamBuffer(stream_id, max_frames=settings.max_pending_frames),
            )
            self._sessions[stream_id] = session
            logger.info(f"Opened pitch session for stream {stream_id}")
            return session

    async def close_session(self, stream_id: str) -> Optional[SessionSummary]:
        """
        Remove a session (on disconnect) and summarise it.

        Returns:
            Summary of the closed session, or None if it did not exist
        """
        async with self._lock:
            session = self._sessions.pop(stream_id, None)
        if session is None:
            return None

        summary = SessionSummary.from_statistics(session, session.pipeline.statistics())
        logger.info(
            f"Closed stream {stream_id}: {summary.frames_processed} frames, "
            f"{summary.voiced_ratio:.0%} voiced, {summary.outlier_ratio:.0%} outliers, "
            f"last note {summary.last_locked_note}, health {summary.health}"
        )
        return summary

    async def get_session(self, stream_id: str) -> Optional[PitchSession]:
        async with self._lock:
            return self._sessions.get(stream_id)

    async def get_statistics(self, stream_id: str) -> Optional[ComponentStatistics]:
        """Latest statistics snapshot for a stream, or None if unknown."""
        session = await self.get_session(stream_id)
        return session.pipeline.statistics() if session else None

    async def get_latest(self, stream_id: str) -> Optional[PitchTrackingResult]:
        session = await self.get_session(stream_id)
        return session.pipeline.latest if session else None

    async def list_stream_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions.keys())


# Global session service instance
session_service = SessionService()
