"""
Audio-synced haptics for streamed video playback.

Turns player lifecycle and position reports into haptic commands. The
playback-facing methods (on_playback_tick, on_seek, on_video_ended, reset)
never block and never raise: buffering is requested fire-and-forget and
device commands are queued to the dispatcher.
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional
from hapticsync.audio.ingestion import is_likely_media_url
from hapticsync.audio.models import SyncSettings
from hapticsync.core.config import settings
from hapticsync.core.errors import HapticSyncError
from hapticsync.core.logging import logger
from hapticsync.services.events import EventKind, NotificationChannel, SyncEvent
from hapticsync.services.haptics import HapticDevice, HapticDispatcher
from hapticsync.services.stream_coordinator import StreamCoordinator

LOG_INTERVAL_SECONDS = 5.0


class SyncState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


CoordinatorFactory = Callable[[SyncSettings, Callable[[SyncEvent], None]], StreamCoordinator]


class AudioSyncService:
    """Coordinates video detection, audio processing and haptic playback for one player."""

    def __init__(
        self,
        device: HapticDevice,
        sync_settings: Optional[SyncSettings] = None,
        notifications: Optional[NotificationChannel] = None,
        coordinator_factory: Optional[CoordinatorFactory] = None,
        classifier: Callable[[str], bool] = is_likely_media_url,
        pipeline_latency_ms: Optional[int] = None,
    ):
        """
        Initialize the service.

        Args:
            device: Haptic device commands are sent to
            sync_settings: User settings (defaults from config)
            notifications: Channel the UI layer reads notifications from
            coordinator_factory: Builds a StreamCoordinator per session
            classifier: Decides whether a detected URL is a video
            pipeline_latency_ms: Fixed pipeline latency (defaults to config value)
        """
        self.device = device
        self.notifications = notifications or NotificationChannel()
        self._sync_settings = sync_settings or SyncSettings.from_settings(settings)
        self._classifier = classifier
        self._coordinator_factory = coordinator_factory or self._default_coordinator
        self.pipeline_latency_ms = (
            settings.pipeline_latency_ms if pipeline_latency_ms is None else pipeline_latency_ms
        )

        self._dispatcher = HapticDispatcher(device)
        self._coordinator: Optional[StreamCoordinator] = None
        self._session_token: Optional[object] = None
        self._state = SyncState.IDLE
        self._processing = False
        self._position = 0.0
        self._last_log_time: Optional[float] = None
        self._disposed = False

    def _default_coordinator(
        self, sync_settings: SyncSettings, on_event: Callable[[SyncEvent], None]
    ) -> StreamCoordinator:
        return StreamCoordinator(sync_settings, classifier=self._classifier, on_event=on_event)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_enabled(self) -> bool:
        return self._sync_settings.enabled

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_paused(self) -> bool:
        return self._state == SyncState.PAUSED

    @property
    def is_ready_to_play(self) -> bool:
        return self._coordinator is not None and self._coordinator.is_first_segment_ready

    @property
    def coordinator(self) -> Optional[StreamCoordinator]:
        return self._coordinator

    @property
    def sync_settings(self) -> SyncSettings:
        return self._sync_settings

    def update_settings(self, sync_settings: SyncSettings) -> None:
        """Replace the live settings; applies to later analysis and lookahead."""
        self._sync_settings = sync_settings
        if self._coordinator is not None:
            self._coordinator.sync_settings = sync_settings
        logger.info(
            f"AudioSyncService: settings updated (enabled={sync_settings.enabled}, "
            f"sensitivity={sync_settings.sensitivity}, offset={sync_settings.latency_offset_ms}ms)"
        )

    def lookahead_ms(self) -> int:
        """Device latency + pipeline latency + user offset."""
        return (
            self.device.anticipation_latency_ms
            + self.pipeline_latency_ms
            + self._sync_settings.latency_offset_ms
        )

    # ------------------------------------------------------------------
    # Player events
    # ------------------------------------------------------------------

    async def on_video_detected(self, url: str) -> None:
        """
        Start a sync session for a detected video.

        Publishes processing_started, then processing_completed once segment 0
        is ready. On any failure publishes an error and still publishes
        processing_completed so the video can play without haptics.
        """
        logger.info(f"AudioSyncService: video detected (url length={len(url or '')})")

        if self._disposed:
            return
        if not self._sync_settings.enabled or not self.device.is_connected:
            logger.warning(
                f"AudioSyncService: skipping - enabled={self._sync_settings.enabled}, "
                f"connected={self.device.is_connected}"
            )
            return
        if not self._classifier(url):
            logger.warning(f"AudioSyncService: URL doesn't look like a video: {url}")
            return

        self._discard_session()
        token = object()
        self._session_token = token
        coordinator = self._coordinator_factory(
            self._sync_settings, lambda event: self._on_coordinator_event(token, event)
        )
        self._coordinator = coordinator
        self._state = SyncState.INITIALIZING
        self._processing = True
        self._position = 0.0
        self.notifications.publish(SyncEvent(EventKind.PROCESSING_STARTED, message="Preparing haptic sync..."))

        try:
            if not coordinator.initialize(url):
                raise HapticSyncError("Source is not an audio/video stream", {"url": url})
            await coordinator.start_first_segment()
            if self._session_token is not token:
                logger.info(f"AudioSyncService: session for {url} was superseded")
                return
            logger.info(
                f"AudioSyncService: first segment ready, {coordinator.timeline.segment_count} segment(s), "
                f"{coordinator.timeline.duration:.1f}s analyzed"
            )
        except Exception as e:
            if self._session_token is not token:
                logger.info(f"AudioSyncService: superseded session for {url} ended with {type(e).__name__}")
                return
            logger.error(f"AudioSyncService: failed to process video {url}: {type(e).__name__}: {e}")
            self.notifications.publish(SyncEvent(EventKind.ERROR, message=f"Failed to prepare haptic sync: {e}"))
        finally:
            if self._session_token is token:
                self._processing = False

        if self._state == SyncState.INITIALIZING:
            self._state = SyncState.READY
        # Allow video to play, with or without haptics
        self.notifications.publish(SyncEvent(EventKind.PROCESSING_COMPLETED))

    def on_playback_tick(self, current_time: float, paused: bool) -> None:
        """
        Handle a playback position report from the player.

        Args:
            current_time: Playback position in seconds
            paused: Whether the player is paused
        """
        try:
            self._handle_tick(current_time, paused)
        except Exception as e:
            logger.error(f"AudioSyncService: error handling playback tick at {current_time:.2f}s: {e}", exc_info=True)

    def _handle_tick(self, current_time: float, paused: bool) -> None:
        coordinator = self._coordinator
        if not self._sync_settings.enabled or coordinator is None:
            return

        if paused:
            if self._state == SyncState.PLAYING:
                self._state = SyncState.PAUSED
                self._dispatcher.send_stop()
                logger.debug(f"AudioSyncService: playback paused at {current_time:.2f}s")
            return

        if self._state == SyncState.PAUSED:
            logger.info(f"AudioSyncService: playback resumed at {current_time:.2f}s")
        self._state = SyncState.PLAYING
        self._position = current_time

        coordinator.ensure_buffered(current_time)

        look_ahead = current_time + self.lookahead_ms() / 1000.0
        timeline = coordinator.timeline
        if not timeline.has_data(look_ahead):
            if self._should_log(current_time):
                logger.warning(f"AudioSyncService: no haptic data for time {look_ahead:.2f}s")
            return

        intensity = timeline.intensity_at(look_ahead)
        if self._should_log(current_time):
            logger.info(f"AudioSyncService: sending intensity {intensity:.3f} at time {current_time:.1f}s")
        self._dispatcher.send_intensity(intensity)

    def on_seek(self, new_time: float) -> None:
        """Handle a user seek; buffering restarts around the new position."""
        try:
            coordinator = self._coordinator
            if not self._sync_settings.enabled or coordinator is None:
                return
            logger.info(f"AudioSyncService: user seeked to {new_time:.2f}s")
            self._position = new_time
            self._last_log_time = None
            coordinator.ensure_buffered(new_time)
        except Exception as e:
            logger.error(f"AudioSyncService: error handling seek to {new_time:.2f}s: {e}", exc_info=True)

    def on_video_ended(self) -> None:
        """Stop haptics and drop the session when the video ends."""
        if self._coordinator is None and self._state in (SyncState.IDLE, SyncState.ENDED):
            return
        logger.info("AudioSyncService: video ended")
        self._discard_session()
        self._state = SyncState.ENDED

    def reset(self) -> None:
        """Stop haptics and drop the session (navigation away, explicit reset)."""
        if self._coordinator is None and self._state == SyncState.IDLE:
            return
        self._discard_session()
        self._state = SyncState.IDLE

    async def dispose(self) -> None:
        """Tear down the service. Safe to call repeatedly."""
        if self._disposed:
            return
        self.reset()
        self._disposed = True
        # Let the final stop reach the device before the dispatcher goes away
        await self._dispatcher.flush()
        await self._dispatcher.close()

    async def flush(self) -> None:
        """Wait until queued haptic commands have reached the device."""
        await self._dispatcher.flush()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the session for status endpoints."""
        coordinator = self._coordinator
        snapshot: Dict[str, Any] = {
            "state": self._state.value,
            "enabled": self._sync_settings.enabled,
            "device": self.device.name,
            "device_connected": self.device.is_connected,
            "processing": self._processing,
            "paused": self.is_paused,
            "position": round(self._position, 3),
            "lookahead_ms": self.lookahead_ms(),
            "url": None,
            "ready_to_play": self.is_ready_to_play,
            "segments": 0,
            "segment_indices": [],
            "analyzed_duration": 0.0,
            "total_segments": None,
        }
        if coordinator is not None:
            timeline = coordinator.timeline
            snapshot.update({
                "url": coordinator.url,
                "segments": timeline.segment_count,
                "segment_indices": timeline.indices(),
                "analyzed_duration": round(timeline.analyzed_duration, 3),
                "total_segments": coordinator.total_segments,
            })
        return snapshot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _discard_session(self) -> None:
        if self._coordinator is not None or self._state in (SyncState.PLAYING, SyncState.PAUSED):
            self._dispatcher.send_stop()
        if self._coordinator is not None:
            self._coordinator.dispose()
        self._coordinator = None
        self._session_token = None
        self._processing = False
        self._last_log_time = None

    def _should_log(self, current_time: float) -> bool:
        last = self._last_log_time
        if last is None or current_time < last or current_time - last >= LOG_INTERVAL_SECONDS:
            self._last_log_time = current_time
            return True
        return False

    def _on_coordinator_event(self, token: object, event: SyncEvent) -> None:
        if token is not self._session_token:
            return
        if event.kind == EventKind.SEGMENT_READY:
            logger.debug(f"AudioSyncService: segment {event.segment_index} ready")
        elif event.kind == EventKind.PROCESSING_PROGRESS:
            self.notifications.publish(event)
        elif event.kind == EventKind.ERROR and event.segment_index != 0:
            # Segment 0 failures are reported once, by on_video_detected
            self.notifications.publish(event)
