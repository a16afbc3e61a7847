"""Helper functions for ingesting and converting incoming audio data."""
import numpy as np
import time
from typing import Optional
from harmonisync.audio.models import AudioFrame
from harmonisync.core.config import settings
from harmonisync.core.logging import logger

PCM16_SCALE = 32768.0


def bytes_to_audio_frame(
    data: bytes,
    stream_id: str,
    sample_rate: Optional[int] = None
) -> AudioFrame:
    """
    Convert raw PCM bytes to an AudioFrame.

    Args:
        data: Raw PCM int16 little-endian bytes
        stream_id: Unique identifier for the stream
        sample_rate: Sample rate (defaults to config value)

    Returns:
        AudioFrame with samples normalised to [-1, 1]
    """
    if sample_rate is None:
        sample_rate = settings.sample_rate

    pcm_array = np.frombuffer(data, dtype="<i2")
    samples = pcm_array.astype(np.float64) / PCM16_SCALE

    return AudioFrame(
        samples=samples,
        sample_rate=sample_rate,
        timestamp=time.time(),
        stream_id=stream_id
    )


def samples_to_pcm16(samples: np.ndarray) -> bytes:
    """Encode float samples in [-1, 1] as PCM16 little-endian bytes."""
    clean = np.nan_to_num(np.asarray(samples, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    pcm = np.round(np.clip(clean, -1.0, 1.0) * 32767.0).astype("<i2")
    return pcm.tobytes()


def validate_audio_data(data: bytes, expected_size: Optional[int] = None) -> bool:
    """
    Validate incoming audio data.

    Args:
        data: Raw audio bytes
        expected_size: Expected size in bytes (optional)

    Returns:
        True if valid, False otherwise
    """
    if len(data) == 0:
        logger.warning("Received empty audio data")
        return False

    # Check if size is multiple of 2 (int16 = 2 bytes)
    if len(data) % 2 != 0:
        logger.warning(f"Audio data size {len(data)} is not multiple of 2 bytes")
        return False

    if expected_size and len(data) != expected_size:
        logger.warning(f"Audio data size {len(data)} != expected {expected_size}")
        return False

    return True
