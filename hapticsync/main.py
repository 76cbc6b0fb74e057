"""FastAPI application entrypoint."""
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from hapticsync.api import ws_sync, rest_status
from hapticsync.core.config import settings
from hapticsync.core.logging import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Haptic Sync Backend",
    description="Audio-to-haptic synchronization for streamed video playback",
    version="0.1.0"
)

# CORS middleware (allow player pages to call the REST API)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using "*" origins
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rest_status.router)


# WebSocket endpoint
@app.websocket("/ws/sync")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for player events."""
    # ws_sync.websocket_sync_endpoint already calls websocket.accept()
    await ws_sync.websocket_sync_endpoint(websocket)


@app.on_event("startup")
async def startup_event():
    """Log the effective configuration on startup."""
    from hapticsync.core.logging import logger

    logger.info(f"Starting Haptic Sync Backend on {settings.host}:{settings.port}")
    logger.info(
        f"Sample rate: {settings.sample_rate} Hz, frame {settings.fft_size}/hop {settings.hop_size}, "
        f"segments of {settings.segment_duration_seconds:.0f}s"
    )
    logger.info(
        f"Haptic device: {settings.haptic_device}, pipeline latency {settings.pipeline_latency_ms} ms, "
        f"first segment timeout {settings.first_segment_timeout_seconds:.0f}s"
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    from hapticsync.core.logging import logger
    logger.info("Shutting down Haptic Sync Backend")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hapticsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
