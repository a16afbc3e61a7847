"""WebSocket endpoint for audio ingestion and pitch streaming."""
import asyncio
import time
import uuid
from typing import Optional
from fastapi import WebSocket, WebSocketDisconnect
from harmonisync.audio.ingestion import bytes_to_audio_frame, validate_audio_data
from harmonisync.audio.notes import NoteTarget
from harmonisync.audio.streaming import result_to_message
from harmonisync.core.config import ConfigurationError, settings
from harmonisync.core.logging import logger
from harmonisync.services.session_service import PitchSession, TooManyStreamsError, session_service


async def receive_frames(session: PitchSession, websocket: WebSocket) -> None:
    """
    Receive binary PCM frames and hand them to the session buffer.

    Frames arriving while the buffer is full are dropped and counted.
    """
    stream_id = session.stream_id
    while True:
        data = await websocket.receive_bytes()

        if not validate_audio_data(data):
            logger.warning(f"Invalid audio data from stream {stream_id}")
            continue

        try:
            frame = bytes_to_audio_frame(data, stream_id)
        except ValueError as e:
            logger.error(f"Error converting audio data for stream {stream_id}: {e}")
            continue

        if not session.buffer.offer(frame):
            session.pipeline.record_dropped_frame()


async def process_frames(session: PitchSession, websocket: WebSocket) -> None:
    """Run buffered frames through the pipeline and send throttled pitch updates."""
    last_update = 0.0
    last_locked: Optional[str] = None
    update_interval = settings.pitch_update_interval_ms / 1000.0

    while True:
        frame = await session.buffer.get_frame()
        if frame is None:
            continue

        # Synchronous, runs to completion
        result = session.pipeline.process_frame(frame)

        locked_note = result.pitch.locked_note
        if locked_note is not None:
            session.last_locked_note = locked_note

        now = time.time()
        # Lock changes are sent immediately, everything else at the update interval
        if locked_note != last_locked or now - last_update >= update_interval:
            await websocket.send_json(result_to_message(result, session.target))
            last_update = now
            last_locked = locked_note


async def process_stream(session: PitchSession, websocket: WebSocket) -> None:
    """
    Run the receiver and processor for one stream until either stops.

    Args:
        session: Pitch session for this stream
        websocket: WebSocket connection
    """
    receiver = asyncio.create_task(receive_frames(session, websocket))
    processor = asyncio.create_task(process_frames(session, websocket))
    done, pending = await asyncio.wait({receiver, processor}, return_when=asyncio.FIRST_COMPLETED)

    for task in pending:
        task.cancel()
    for task in pending:
        try:
            await task
        except asyncio.CancelledError:
            pass

    for task in done:
        error = task.exception()
        if isinstance(error, WebSocketDisconnect):
            logger.info(f"WebSocket disconnected for stream {session.stream_id}")
        elif error is not None:
            logger.error(f"Error processing stream {session.stream_id}: {error}")


def _parse_tempo(websocket: WebSocket) -> Optional[tuple]:
    params = websocket.query_params
    if "tempo_bpm" not in params and "note_duration_beats" not in params:
        return None
    try:
        tempo = float(params.get("tempo_bpm", settings.tempo_bpm))
        duration = float(params.get("note_duration_beats", settings.note_duration_beats))
    except ValueError:
        logger.warning(f"Ignoring malformed tempo parameters: {dict(params)}")
        return None
    return tempo, duration


def _parse_target(websocket: WebSocket) -> Optional[NoteTarget]:
    params = websocket.query_params
    expected_note = params.get("expected_note")
    if not expected_note:
        return None
    is_male = params.get("is_male", "true").strip().lower() not in ("false", "0", "no")
    try:
        return NoteTarget(note=expected_note, is_male=is_male)
    except ValueError as e:
        logger.warning(f"Ignoring expected note: {e}")
        return None


async def websocket_audio_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler for /ws/audio.

    Accepts binary PCM16 LE mono frames and sends JSON pitch updates.
    Optional query parameters: tempo_bpm, note_duration_beats, expected_note, is_male.
    """
    await websocket.accept()

    # Generate unique stream ID
    stream_id = f"ws-{uuid.uuid4().hex[:8]}"
    logger.info(f"New WebSocket connection: {stream_id}")

    try:
        session = await session_service.open_session(stream_id)
    except TooManyStreamsError as e:
        logger.warning(f"Rejecting stream {stream_id}: {e}")
        await websocket.close(code=1013)
        return

    try:
        tempo = _parse_tempo(websocket)
        if tempo is not None:
            try:
                session.pipeline.update_tempo(*tempo)
            except ConfigurationError as e:
                logger.warning(f"Ignoring tempo for stream {stream_id}: {e}")

        session.target = _parse_target(websocket)

        await websocket.send_json({
            "stream_id": stream_id,
            "state": "ready",
            "expected_note": session.target.note if session.target else None,
        })
        await process_stream(session, websocket)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for stream {stream_id}")
    finally:
        await session_service.close_session(stream_id)
        try:
            await websocket.close()
        except (RuntimeError, WebSocketDisconnect):
            # Already closed by the client
            pass
        logger.info(f"Cleaned up stream {stream_id}")
