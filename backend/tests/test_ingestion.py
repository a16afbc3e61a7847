"""Tests for PCM ingestion and the per-stream frame buffer."""
import asyncio
import pytest
import numpy as np
from harmonisync.audio.buffers import StreamBuffer
from harmonisync.audio.ingestion import bytes_to_audio_frame, samples_to_pcm16, validate_audio_data
from harmonisync.audio.models import AudioFrame


def test_bytes_to_audio_frame_normalizes_pcm16():
    """Test that little-endian PCM16 is scaled to [-1, 1)."""
    data = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()

    frame = bytes_to_audio_frame(data, "stream-1", sample_rate=16000)

    assert frame.stream_id == "stream-1"
    assert frame.sample_rate == 16000
    assert list(frame.samples[:3]) == [0.0, 0.5, -1.0]
    assert frame.samples[3] == pytest.approx(32767 / 32768)


def test_samples_to_pcm16_clips_and_sanitizes():
    data = samples_to_pcm16(np.array([0.5, 2.0, -2.0, np.nan]))

    pcm = np.frombuffer(data, dtype="<i2")
    assert list(pcm) == [16384, 32767, -32767, 0]


def test_validate_audio_data():
    """Test basic size checks on incoming payloads."""
    assert validate_audio_data(b"\x00\x00" * 10)
    assert not validate_audio_data(b"")
    assert not validate_audio_data(b"\x00\x00\x00")
    assert not validate_audio_data(b"\x00\x00" * 10, expected_size=40)


def make_frame():
    return AudioFrame(samples=np.zeros(16), sample_rate=16000)


def test_stream_buffer_drops_when_full():
    """Test that frames beyond capacity are dropped and counted."""
    buffer = StreamBuffer("stream-1", max_frames=2)

    accepted = [buffer.offer(make_frame()) for _ in range(3)]

    assert accepted == [True, True, False]
    assert buffer.frames_dropped == 1
    assert buffer.frames_received == 3
    assert buffer.pending == 2


def test_stream_buffer_get_frame():
    """Test that buffered frames come back in order and an empty buffer times out."""
    buffer = StreamBuffer("stream-1", max_frames=2)
    frame = make_frame()
    buffer.offer(frame)

    async def drain():
        first = await buffer.get_frame(timeout=0.1)
        second = await buffer.get_frame(timeout=0.01)
        return first, second

    first, second = asyncio.run(drain())

    assert first is frame
    assert second is None
