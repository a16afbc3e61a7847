"""Bounded per-stream frame buffering with drop-on-overload."""
import asyncio
from typing import Optional
from harmonisync.audio.models import AudioFrame
from harmonisync.core.logging import logger


class StreamBuffer:
    """
    Hands captured frames from the receiver to the pitch pipeline.

    The queue is deliberately short: when the pipeline falls behind, new
    frames are dropped instead of queued so latency cannot grow without bound.
    """

    def __init__(self, stream_id: str, max_frames: int = 4):
        """
        Initialize buffer for a stream.

        Args:
            stream_id: Unique identifier for the stream
            max_frames: Frames allowed to wait for processing
        """
        self.stream_id = stream_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_frames)
        self.frames_received = 0
        self.frames_dropped = 0

    def offer(self, frame: AudioFrame) -> bool:
        """
        Add a frame if there is room.

        Returns:
            False if the frame was dropped
        """
        self.frames_received += 1
        try:
            self.queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            self.frames_dropped += 1
            if self.frames_dropped == 1 or self.frames_dropped % 50 == 0:
                logger.warning(
                    f"Pipeline behind for stream {self.stream_id}, dropped {self.frames_dropped} frame(s)"
                )
            return False

    async def get_frame(self, timeout: Optional[float] = None) -> Optional[AudioFrame]:
        """Get the next frame from the buffer."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    @property
    def pending(self) -> int:
        return self.queue.qsize()
