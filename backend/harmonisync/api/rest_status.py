"""REST endpoints for health, statistics and pitch state polling."""
from fastapi import APIRouter, HTTPException
from datetime import datetime
from harmonisync.audio.statistics import assess_health
from harmonisync.audio.streaming import result_to_message
from harmonisync.services.session_service import session_service

router = APIRouter()

VERSION = "0.2.0"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Status and version information
    """
    return {
        "status": "ok",
        "version": VERSION
    }


@router.get("/streams")
async def list_streams():
    """List active stream ids."""
    return {"streams": await session_service.list_stream_ids()}


@router.get("/streams/{stream_id}/statistics")
async def get_stream_statistics(stream_id: str):
    """
    Get the merged component statistics snapshot for a stream.

    Args:
        stream_id: Stream identifier

    Returns:
        Per-component counters and a health grade
    """
    stats = await session_service.get_statistics(stream_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"Stream {stream_id} not found")

    return {"stream_id": stream_id, **stats.as_dict(), "health": assess_health(stats)}


@router.get("/streams/{stream_id}/pitch")
async def get_stream_pitch(stream_id: str):
    """
    Get the latest stable pitch and voice state for a stream.

    Args:
        stream_id: Stream identifier

    Returns:
        Latest pitch message, or an empty state if no frame was processed yet
    """
    session = await session_service.get_session(stream_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Stream {stream_id} not found")

    latest = session.pipeline.latest
    if latest is None:
        return {"stream_id": stream_id, "state": None}

    message = result_to_message(latest, session.target)
    # Format timestamp as ISO 8601
    if message["timestamp"]:
        message["updated_at"] = datetime.fromtimestamp(message["timestamp"]).isoformat() + "Z"
    return message
