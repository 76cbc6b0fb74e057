"""Notifications from the sync engine to the player/UI layer."""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from hapticsync.audio.buffers import DropOldestQueue
from hapticsync.core.config import settings


class EventKind(str, Enum):
    PROCESSING_STARTED = "processing_started"
    PROCESSING_PROGRESS = "processing_progress"
    PROCESSING_COMPLETED = "processing_completed"
    SEGMENT_READY = "segment_ready"
    ERROR = "error"


@dataclass
class SyncEvent:
    """One notification."""
    kind: EventKind
    message: Optional[str] = None
    segment_index: Optional[int] = None
    segments_completed: Optional[int] = None
    percent: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form; unset fields are left out."""
        payload: Dict[str, Any] = {"type": self.kind.value, "timestamp": self.timestamp}
        if self.message is not None:
            payload["message"] = self.message
        if self.segment_index is not None:
            payload["segment_index"] = self.segment_index
        if self.segments_completed is not None:
            payload["segments_completed"] = self.segments_completed
        if self.percent is not None:
            payload["percent"] = round(self.percent, 1)
        return payload


class NotificationChannel:
    """UI-facing channel; publishing never blocks the engine."""

    def __init__(self, max_events: Optional[int] = None):
        self._queue: DropOldestQueue[SyncEvent] = DropOldestQueue(
            "notifications", max_events or settings.notification_queue_size
        )

    def publish(self, event: SyncEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[SyncEvent]:
        """Next event, or None on timeout."""
        return await self._queue.get(timeout=timeout)

    def drain(self) -> list[SyncEvent]:
        """Everything published and not yet consumed."""
        return self._queue.drain()
