"""
Incremental fetch, decode and analysis of a streamed audio track.

Only segment 0 is ever awaited; everything after it is produced in the
background, a bounded distance ahead of playback. One producer task per
session processes one segment at a time, so the analyzer state is only ever
advanced by one segment at a time. A playback position outside the analyzed
range restarts production there with a fresh analyzer state.
"""
import asyncio
import math
from typing import Callable, Dict, Optional
from hapticsync.audio.dsp.analyzer import AudioAnalyzer, analyze_samples
from hapticsync.audio.ingestion import is_likely_media_url
from hapticsync.audio.models import Segment, SegmentState, SyncSettings
from hapticsync.audio.sources import AudioSource, create_source
from hapticsync.audio.timeline import Timeline
from hapticsync.core.config import settings
from hapticsync.core.errors import (
    AnalysisError,
    DecodeError,
    FetchError,
    FirstSegmentTimeoutError,
    HapticSyncError,
)
from hapticsync.core.logging import logger
from hapticsync.services.events import EventKind, SyncEvent

CANCELLED = "cancelled"


class StreamCoordinator:
    """Keeps the timeline of one session filled a little ahead of playback."""

    def __init__(
        self,
        sync_settings: SyncSettings,
        source_factory: Callable[[str], AudioSource] = create_source,
        classifier: Callable[[str], bool] = is_likely_media_url,
        on_event: Optional[Callable[[SyncEvent], None]] = None,
        segment_duration: Optional[float] = None,
        buffer_ahead: Optional[float] = None,
        first_segment_timeout: Optional[float] = None,
        analyzer: Optional[AudioAnalyzer] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            sync_settings: Settings passed to the analyzer
            source_factory: Builds the audio source for a URL
            classifier: Decides whether a URL carries audio/video
            on_event: Observer for segment-ready, progress and error events
            segment_duration: Segment length in seconds (defaults to config value)
            buffer_ahead: Seconds to keep analyzed ahead of playback (defaults to config value)
            first_segment_timeout: Bounded wait for segment 0 (defaults to config value)
            analyzer: Analyzer holding the session state (a fresh one by default)
        """
        self.sync_settings = sync_settings
        self._source_factory = source_factory
        self._classifier = classifier
        self._on_event = on_event
        self.segment_duration = segment_duration or settings.segment_duration_seconds
        self.buffer_ahead = settings.buffer_ahead_seconds if buffer_ahead is None else buffer_ahead
        self.first_segment_timeout = first_segment_timeout or settings.first_segment_timeout_seconds
        self._analyzer = analyzer or AudioAnalyzer()

        self.timeline = Timeline()
        self._source: Optional[AudioSource] = None
        self._url: Optional[str] = None
        self._segments: Dict[int, Segment] = {}
        self._task: Optional[asyncio.Task] = None
        self._next_index = 0
        self._target_index = -1
        self._restart_at: Optional[int] = None
        self._last_analyzed = -1
        self._end_index: Optional[int] = None
        self._completed = 0
        self._first_ready = False
        self._first_error: Optional[BaseException] = None
        self._first_waiter: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def url(self) -> Optional[str]:
        return self._url

    @property
    def is_first_segment_ready(self) -> bool:
        return self._first_ready

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def segments_completed(self) -> int:
        return self._completed

    @property
    def total_segments(self) -> Optional[int]:
        """Segment count implied by the source duration, if known."""
        if self._end_index is not None:
            return self._end_index
        if self._source is None or self._source.duration is None:
            return None
        return max(1, math.ceil(self._source.duration / self.segment_duration - 1e-9))

    def segment_state(self, index: int) -> Optional[SegmentState]:
        segment = self._segments.get(index)
        return segment.state if segment else None

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def initialize(self, url: str) -> bool:
        """
        Start a new session for a source URL.

        Resets the timeline and the analyzer state. Returns False, without
        starting any segment work, when the URL is not classified as media.

        Raises:
            HapticSyncError: If no audio source can be built for the URL
        """
        self.dispose()
        self._analyzer.reset()
        self._reset_progress()

        if not self._classifier(url):
            logger.warning(f"StreamCoordinator: URL doesn't look like media, not starting: {url}")
            return False

        try:
            self._source = self._source_factory(url)
        except Exception as e:
            logger.error(f"StreamCoordinator: cannot open source {url}: {e}")
            raise HapticSyncError(f"Cannot open audio source: {e}", {"url": url}) from e

        self._url = url
        logger.info(
            f"StreamCoordinator: initialized for {url} "
            f"(segment {self.segment_duration:.0f}s, buffer ahead {self.buffer_ahead:.0f}s)"
        )
        return True

    async def start_first_segment(self, timeout: Optional[float] = None) -> None:
        """
        Produce segment 0 and wait until it is ready.

        Args:
            timeout: Bounded wait in seconds (defaults to the configured timeout)

        Raises:
            FirstSegmentTimeoutError: If segment 0 is not ready in time
            FetchError, DecodeError, AnalysisError: If segment 0 failed
            HapticSyncError: If not initialized, or stopped while waiting
        """
        if self._source is None:
            raise HapticSyncError("StreamCoordinator is not initialized")

        timeout = timeout or self.first_segment_timeout
        if not self._first_ready and self._first_error is None:
            self._raise_target(0)
            self._start_producer()
            if self._first_waiter is None or self._first_waiter.done():
                self._first_waiter = asyncio.get_running_loop().create_future()
            try:
                await asyncio.wait_for(asyncio.shield(self._first_waiter), timeout)
            except asyncio.TimeoutError:
                logger.error(f"StreamCoordinator: timeout waiting for first segment of {self._url}")
                raise FirstSegmentTimeoutError(timeout) from None

        if self._first_error is not None:
            raise self._first_error

        logger.info(f"StreamCoordinator: first segment ready for {self._url}")
        self.ensure_buffered(0.0)

    def ensure_buffered(self, current_time: float) -> None:
        """
        Top up the lookahead buffer for a playback position. Never blocks.

        Args:
            current_time: Playback position in seconds
        """
        if self._source is None:
            return

        current_time = max(0.0, current_time)
        current_index = self._segment_index_for(current_time)
        last_index = self._last_index()
        if last_index is not None and current_index > last_index:
            return

        wanted = self._segment_index_for(current_time + self.buffer_ahead)
        if last_index is not None:
            wanted = min(wanted, last_index)

        # Playback landed on audio nobody is working on: restart there instead of catching up
        if (
            current_index != self._next_index
            and self._needs_production(current_index)
            and not self.timeline.has_data(current_time)
        ):
            if self._restart_at != current_index:
                logger.info(
                    f"StreamCoordinator: playback at {current_time:.1f}s is outside analyzed range, "
                    f"restarting at segment {current_index}"
                )
                self._restart_at = current_index

        self._raise_target(wanted)
        self._start_producer()

    def stop(self) -> None:
        """Cancel in-flight fetch/decode/analysis. Safe to call repeatedly."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info(f"StreamCoordinator: stopped producer for {self._url}")
        self._task = None
        self._target_index = self._next_index - 1
        self._restart_at = None

        if self._first_waiter is not None and not self._first_waiter.done():
            self._first_waiter.set_exception(HapticSyncError("Stream stopped before the first segment was ready"))
            # The waiter may already be gone; keep asyncio from warning about it
            self._first_waiter.exception()

    def dispose(self) -> None:
        """Stop and release every buffer. Safe to call repeatedly."""
        self.stop()
        self.timeline.clear()
        for segment in self._segments.values():
            segment.release_samples()
        self._segments.clear()
        self._source = None

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    def _reset_progress(self) -> None:
        self._url = None
        self._next_index = 0
        self._target_index = -1
        self._restart_at = None
        self._last_analyzed = -1
        self._end_index = None
        self._completed = 0
        self._first_ready = False
        self._first_error = None
        self._first_waiter = None

    def _segment_index_for(self, time_seconds: float) -> int:
        return int(time_seconds // self.segment_duration)

    def _last_index(self) -> Optional[int]:
        total = self.total_segments
        return None if total is None else total - 1

    def _raise_target(self, index: int) -> None:
        if index > self._target_index:
            self._target_index = index

    def _needs_production(self, index: int) -> bool:
        """Whether a segment was never produced, or was cancelled before it finished."""
        segment = self._segments.get(index)
        return segment is None or (segment.state == SegmentState.FAILED and segment.error == CANCELLED)

    def _past_end(self, index: int) -> bool:
        return self._end_index is not None and index >= self._end_index

    def _has_work(self) -> bool:
        if self._restart_at is not None:
            return True
        return self._next_index <= self._target_index and not self._past_end(self._next_index)

    def _start_producer(self) -> None:
        if self._task is not None and not self._task.done():
            return
        if not self._has_work():
            return
        self._task = asyncio.get_running_loop().create_task(self._produce())

    async def _produce(self) -> None:
        while self._has_work():
            index = self._next_index
            if self._restart_at is not None:
                index = self._restart_at
                self._restart_at = None
                self._raise_target(index)

            # Segments already ready (or failed for good) are never redone
            while index <= self._target_index and not self._needs_production(index):
                index += 1
            self._next_index = index
            if index > self._target_index or self._past_end(index):
                break

            if index != self._last_analyzed + 1:
                logger.info(
                    f"StreamCoordinator: segment {index} does not follow segment {self._last_analyzed}, "
                    f"resetting analyzer state"
                )
                self._analyzer.reset()
            await self._process_segment(index)
            self._next_index = index + 1

    async def _process_segment(self, index: int) -> None:
        source = self._source
        start_time = index * self.segment_duration
        end_time = start_time + self.segment_duration
        if source.duration is not None:
            end_time = min(end_time, source.duration)

        segment = Segment(
            index=index,
            start_time=start_time,
            end_time=max(start_time, end_time),
            hop_seconds=self._analyzer.hop_seconds,
        )
        self._segments[index] = segment

        try:
            segment.mark(SegmentState.FETCHING)
            try:
                payload = await source.fetch(start_time, segment.duration)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise FetchError(f"Failed to fetch segment {index}: {e}", index, self._url) from e

            segment.mark(SegmentState.DECODING)
            try:
                samples = await asyncio.to_thread(source.decode, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise DecodeError(f"Failed to decode segment {index}: {e}", index, self._url) from e

            if len(samples) < self._analyzer.fft_size:
                self._mark_end_of_stream(segment, len(samples))
                return

            segment.samples = samples
            segment.end_time = start_time + len(samples) / self._analyzer.sample_rate

            segment.mark(SegmentState.ANALYZING)
            try:
                result, new_state = await asyncio.to_thread(
                    analyze_samples,
                    samples,
                    self._analyzer.state,
                    self.sync_settings,
                    self._analyzer.sample_rate,
                    self._analyzer.fft_size,
                    self._analyzer.hop_size,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise AnalysisError(f"Failed to analyze segment {index}: {e}", index) from e

            self._analyzer.state = new_state
            self._last_analyzed = index
            segment.intensities = result.intensities
            segment.accents = result.accents
            segment.mark(SegmentState.READY)
            segment.release_samples()
            self.timeline.publish(segment)
            self._completed += 1

            logger.info(
                f"StreamCoordinator: segment {index} ready [{segment.start_time:.1f}s, {segment.end_time:.1f}s) "
                f"{segment.n_frames} frames | drops={result.stats.drops}, spikes={result.stats.spikes}, "
                f"mean={result.stats.mean_intensity:.3f}"
            )

            if index == 0:
                self._resolve_first(None)
            self._emit(SyncEvent(EventKind.SEGMENT_READY, segment_index=index))
            self._emit_progress(index)

        except asyncio.CancelledError:
            segment.release_samples()
            segment.mark(SegmentState.FAILED, CANCELLED)
            raise
        except HapticSyncError as e:
            self._fail_segment(segment, e)
        except Exception as e:
            logger.error(f"StreamCoordinator: unexpected error in segment {index}: {e}", exc_info=True)
            self._fail_segment(segment, HapticSyncError(f"Segment {index} failed: {e}", {"segment_index": index}))

    def _fail_segment(self, segment: Segment, error: HapticSyncError) -> None:
        segment.release_samples()
        segment.mark(SegmentState.FAILED, error.message)
        logger.error(
            f"StreamCoordinator: segment {segment.index} failed ({type(error).__name__}) "
            f"for {self._url}: {error.message}"
        )
        if segment.index == 0:
            self._resolve_first(error)
        self._emit(SyncEvent(EventKind.ERROR, message=error.message, segment_index=segment.index))

    def _mark_end_of_stream(self, segment: Segment, n_samples: int) -> None:
        self._end_index = segment.index
        self._segments.pop(segment.index, None)
        logger.info(
            f"StreamCoordinator: end of stream at segment {segment.index} "
            f"({n_samples} trailing samples) for {self._url}"
        )
        if segment.index == 0:
            self._resolve_first(DecodeError("Source contains no analyzable audio", 0, self._url))

    def _resolve_first(self, error: Optional[HapticSyncError]) -> None:
        if error is None:
            self._first_ready = True
        else:
            self._first_error = error

        waiter = self._first_waiter
        if waiter is None or waiter.done():
            return
        if error is None:
            waiter.set_result(None)
        else:
            waiter.set_exception(error)
            waiter.exception()

    def _emit_progress(self, index: int) -> None:
        total = self.total_segments
        percent = None
        if total:
            percent = min(100.0, 100.0 * self._completed / total)
        self._emit(SyncEvent(
            EventKind.PROCESSING_PROGRESS,
            segment_index=index,
            segments_completed=self._completed,
            percent=percent,
        ))

    def _emit(self, event: SyncEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.error(f"StreamCoordinator: event observer failed on {event.kind.value}: {e}")
