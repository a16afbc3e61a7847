"""FastAPI application entrypoint."""
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from harmonisync.api import ws_audio, rest_status
from harmonisync.core.config import settings
from harmonisync.core.logging import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="HarmoniSync Pitch Tracking Backend",
    description="Real-time monophonic pitch tracking for voice training",
    version=rest_status.VERSION
)

# CORS middleware (allow frontend connections)
# Note: For WebSocket, CORS doesn't apply, but this helps with REST polling
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=False,  # Must be False when using "*" origins
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rest_status.router)


# WebSocket endpoint
@app.websocket("/ws/audio")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for audio streaming."""
    # ws_audio.websocket_audio_endpoint already calls websocket.accept()
    await ws_audio.websocket_audio_endpoint(websocket)


@app.on_event("startup")
async def startup_event():
    """Validate pipeline configuration and log audio settings on startup."""
    from harmonisync.core.config import PipelineConfig
    from harmonisync.core.logging import logger

    # Fail fast on a bad environment instead of on the first connection
    config = PipelineConfig.from_settings(settings)

    logger.info(f"Starting HarmoniSync Pitch Tracking Backend on {settings.host}:{settings.port}")
    logger.info(f"Sample rate: {settings.sample_rate} Hz, Frame size: {settings.frame_size} samples")
    logger.info(
        f"Vocal range: {config.min_frequency_hz}-{config.max_frequency_hz} Hz, "
        f"filter strength {config.filter_strength}, "
        f"lock after {config.resolved_required_frames} stable frame(s)"
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    from harmonisync.core.logging import logger
    logger.info("Shutting down HarmoniSync Pitch Tracking Backend")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "harmonisync.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
