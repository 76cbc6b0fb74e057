"""WebSocket endpoint for player events in and sync notifications out."""
import asyncio
import dataclasses
import json
import uuid
from typing import Any, Dict, Optional, Set
from fastapi import WebSocket, WebSocketDisconnect
from hapticsync.core.logging import logger
from hapticsync.services.events import EventKind, SyncEvent
from hapticsync.services.haptics import create_haptic_device
from hapticsync.services.session_registry import session_registry
from hapticsync.services.sync_service import AudioSyncService

SETTINGS_FIELDS = {"enabled", "sensitivity", "min_intensity", "max_intensity", "latency_offset_ms"}


async def forward_notifications(service: AudioSyncService, websocket: WebSocket) -> None:
    """Send every notification the service publishes to the player as JSON."""
    while True:
        event = await service.notifications.get()
        await websocket.send_json(event.to_dict())


def apply_settings(service: AudioSyncService, message: Dict[str, Any]) -> None:
    """Merge a settings message into the service's live settings."""
    changes = {key: value for key, value in message.items() if key in SETTINGS_FIELDS}
    try:
        service.update_settings(dataclasses.replace(service.sync_settings, **changes))
    except (TypeError, ValueError) as e:
        logger.warning(f"Rejected settings update {changes}: {e}")
        service.notifications.publish(SyncEvent(EventKind.ERROR, message=f"Invalid settings: {e}"))


def handle_message(service: AudioSyncService, message: Dict[str, Any], background: Set[asyncio.Task]) -> None:
    """
    Dispatch one player message to the sync service.

    Args:
        service: The session's sync service
        message: Decoded JSON message with a "type" field
        background: Set holding references to spawned tasks
    """
    kind = message.get("type")

    if kind == "video_detected":
        task = asyncio.create_task(service.on_video_detected(str(message.get("url", ""))))
        background.add(task)
        task.add_done_callback(background.discard)
    elif kind == "tick":
        paused = message.get("paused", False)
        if not isinstance(paused, bool):
            raise TypeError(f"paused must be a boolean, got {paused!r}")
        service.on_playback_tick(float(message["current_time"]), paused)
    elif kind == "seek":
        service.on_seek(float(message["time"]))
    elif kind == "ended":
        service.on_video_ended()
    elif kind == "reset":
        service.reset()
    elif kind == "settings":
        apply_settings(service, message)
    else:
        logger.warning(f"Unknown player message type: {kind}")


async def process_session(session_id: str, websocket: WebSocket) -> None:
    """
    Run one player session: receive events, send notifications.

    Args:
        session_id: Unique identifier for this session
        websocket: WebSocket connection
    """
    service = AudioSyncService(create_haptic_device())
    await session_registry.register(session_id, service)

    sender: Optional[asyncio.Task] = None
    background: Set[asyncio.Task] = set()

    try:
        await websocket.send_json({"type": "session", "session_id": session_id})
        sender = asyncio.create_task(forward_notifications(service, websocket))

        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise ValueError("message is not a JSON object")
                handle_message(service, message, background)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Invalid message from session {session_id}: {e}")
                continue

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session_id}")
    except Exception as e:
        logger.error(f"Error processing session {session_id}: {e}")
    finally:
        # Cleanup on disconnect
        tasks = [task for task in (sender, *background) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await service.dispose()
        await session_registry.unregister(session_id)
        logger.info(f"Cleaned up session {session_id}")


async def websocket_sync_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler for /ws/sync.

    Accepts JSON player events and sends JSON sync notifications.
    """
    await websocket.accept()

    # Generate unique session ID
    session_id = f"ws-{uuid.uuid4().hex[:8]}"
    logger.info(f"New WebSocket connection: {session_id}")

    try:
        await process_session(session_id, websocket)
    except Exception as e:
        logger.error(f"WebSocket error for {session_id}: {e}")
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass
