"""Unit tests for the stream coordinator."""
import asyncio
import pytest
import numpy as np
from hapticsync.audio.models import SegmentState, SyncSettings
from hapticsync.audio.sources import InMemorySource
from hapticsync.core.errors import FetchError, FirstSegmentTimeoutError, HapticSyncError
from hapticsync.services.events import EventKind
from hapticsync.services.stream_coordinator import StreamCoordinator
from tests.fakes import FailingSource

TONE_URL = "synthetic://track?pattern=tone&seconds={seconds}"


def make_coordinator(events=None, source_factory=None, segment_duration=1.0, buffer_ahead=2.0, **kwargs):
    if source_factory is not None:
        kwargs["source_factory"] = source_factory
    return StreamCoordinator(
        SyncSettings(),
        on_event=events.append if events is not None else None,
        segment_duration=segment_duration,
        buffer_ahead=buffer_ahead,
        **kwargs,
    )


async def wait_idle(coordinator, timeout=30.0):
    """Wait until the background producer has nothing left to do."""
    async def poll():
        while coordinator.is_running:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


def test_first_segment_then_background_buffering():
    """Test that only segment 0 is awaited and the rest follow in the background."""
    events = []

    async def scenario():
        coordinator = make_coordinator(events)
        assert coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)

        assert coordinator.is_first_segment_ready
        assert coordinator.timeline.has_data(0.5)

        await wait_idle(coordinator)
        indices = coordinator.timeline.indices()
        coordinator.dispose()
        return coordinator, indices

    coordinator, indices = asyncio.run(scenario())

    assert indices == [0, 1, 2]
    assert coordinator.total_segments == 5
    ready = [event.segment_index for event in events if event.kind == EventKind.SEGMENT_READY]
    assert ready == [0, 1, 2]
    progress = [event for event in events if event.kind == EventKind.PROCESSING_PROGRESS]
    assert progress[-1].segments_completed == 3
    assert progress[-1].percent == pytest.approx(60.0)


def test_ensure_buffered_stops_at_end_of_source():
    """Test that buffering never requests segments past the source end."""
    async def scenario():
        coordinator = make_coordinator()
        coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(2.5)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(10.0)
        running = coordinator.is_running
        indices = coordinator.timeline.indices()
        coordinator.dispose()
        return indices, running

    indices, running = asyncio.run(scenario())

    assert indices == [0, 1, 2, 3, 4]
    assert not running


def test_short_tail_ends_the_stream():
    """Test that a trailing remainder shorter than one frame is not a segment."""
    samples = np.sin(2 * np.pi * 50 * np.arange(int(2.02 * 44100)) / 44100).astype(np.float32)

    async def scenario():
        coordinator = make_coordinator(
            source_factory=lambda url: InMemorySource(samples, url=url),
            classifier=lambda url: True,
            buffer_ahead=5.0,
        )
        coordinator.initialize("memory://clip")
        await coordinator.start_first_segment(timeout=30)
        await wait_idle(coordinator)
        return coordinator.timeline.indices(), coordinator.total_segments

    indices, total = asyncio.run(scenario())

    assert indices == [0, 1]
    assert total == 2


def test_failed_segment_does_not_stop_later_segments():
    """Test that one failed fetch leaves a gap but later segments still arrive."""
    events = []

    async def scenario():
        coordinator = make_coordinator(
            events,
            source_factory=lambda url: FailingSource(url, fail_at={2.0}),
        )
        coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(2.5)
        await wait_idle(coordinator)
        return coordinator

    coordinator = asyncio.run(scenario())
    timeline = coordinator.timeline

    assert timeline.indices() == [0, 1, 3, 4]
    assert coordinator.segment_state(2) == SegmentState.FAILED
    assert not timeline.has_data(2.5)
    assert timeline.has_data(3.5)
    assert timeline.analyzed_duration == pytest.approx(2.0)
    errors = [event for event in events if event.kind == EventKind.ERROR]
    assert [event.segment_index for event in errors] == [2]


def test_first_segment_failure_is_raised():
    """Test that a segment 0 failure reaches the caller."""
    events = []

    async def scenario():
        coordinator = make_coordinator(events, source_factory=lambda url: FailingSource(url, fail_at={0.0}))
        coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)

    with pytest.raises(FetchError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.segment_index == 0
    assert [event.kind for event in events] == [EventKind.ERROR]


def test_first_segment_timeout():
    """Test that waiting for segment 0 is bounded."""
    async def scenario():
        coordinator = make_coordinator(source_factory=lambda url: FailingSource(url, delay=5.0))
        coordinator.initialize(TONE_URL.format(seconds=5))
        try:
            await coordinator.start_first_segment(timeout=0.05)
        finally:
            coordinator.dispose()

    with pytest.raises(FirstSegmentTimeoutError):
        asyncio.run(scenario())


def test_stop_while_waiting_for_first_segment():
    """Test that stopping releases a caller waiting on segment 0."""
    async def scenario():
        coordinator = make_coordinator(source_factory=lambda url: FailingSource(url, delay=5.0))
        coordinator.initialize(TONE_URL.format(seconds=5))
        waiter = asyncio.create_task(coordinator.start_first_segment(timeout=10))
        await asyncio.sleep(0.02)
        coordinator.stop()
        await waiter

    with pytest.raises(HapticSyncError):
        asyncio.run(scenario())


def test_stop_cancels_in_flight_segment():
    """Test that stop cancels background work without publishing it."""
    async def scenario():
        coordinator = make_coordinator(
            source_factory=lambda url: FailingSource(url, delay=5.0, delay_from=1.0),
        )
        coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)
        await asyncio.sleep(0.02)
        assert coordinator.is_running

        coordinator.stop()
        coordinator.stop()
        await asyncio.sleep(0.02)
        return coordinator

    coordinator = asyncio.run(scenario())

    assert not coordinator.is_running
    assert coordinator.timeline.indices() == [0]
    assert coordinator.segment_state(1) == SegmentState.FAILED


def test_dispose_clears_session():
    """Test that dispose drops segments and ignores later buffering requests."""
    async def scenario():
        coordinator = make_coordinator()
        coordinator.initialize(TONE_URL.format(seconds=5))
        await coordinator.start_first_segment(timeout=30)
        coordinator.dispose()
        coordinator.dispose()
        coordinator.ensure_buffered(1.0)
        return coordinator

    coordinator = asyncio.run(scenario())

    assert coordinator.timeline.segment_count == 0
    assert not coordinator.is_running
    assert coordinator.segment_state(0) is None


def test_seek_past_buffer_skips_ahead():
    """Test that a far seek jumps to the playback segment instead of catching up."""
    async def scenario():
        coordinator = make_coordinator(buffer_ahead=1.0)
        coordinator.initialize(TONE_URL.format(seconds=10))
        await coordinator.start_first_segment(timeout=30)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(7.5)
        await wait_idle(coordinator)
        indices = coordinator.timeline.indices()
        coordinator.dispose()
        return indices

    assert asyncio.run(scenario()) == [0, 1, 7, 8]


def test_seek_back_into_skipped_audio_fills_the_gap():
    """Test that seeking back into skipped audio produces it, without redoing ready segments."""
    events = []

    async def scenario():
        coordinator = make_coordinator(events, segment_duration=2.0, buffer_ahead=2.0)
        coordinator.initialize(TONE_URL.format(seconds=20))
        await coordinator.start_first_segment(timeout=30)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(15.0)
        await wait_idle(coordinator)
        after_forward = coordinator.timeline.indices()

        coordinator.ensure_buffered(6.0)
        await wait_idle(coordinator)
        coordinator.ensure_buffered(6.5)
        await wait_idle(coordinator)

        timeline = coordinator.timeline
        result = {
            "after_forward": after_forward,
            "indices": timeline.indices(),
            "data": [timeline.has_data(t) for t in (6.0, 8.0, 4.5, 14.0)],
            "analyzed": timeline.analyzed_duration,
            "skipped": coordinator.segment_state(2),
        }
        coordinator.dispose()
        return result

    result = asyncio.run(scenario())

    assert result["after_forward"] == [0, 1, 7, 8]
    assert result["indices"] == [0, 1, 3, 4, 5, 6, 7, 8]
    assert result["data"] == [True, True, False, True]
    assert result["analyzed"] == pytest.approx(4.0)
    assert result["skipped"] is None
    ready = [event.segment_index for event in events if event.kind == EventKind.SEGMENT_READY]
    assert sorted(ready) == sorted(set(ready))


def test_initialize_rejects_non_media_url():
    """Test that a non-media URL starts no work."""
    async def scenario():
        coordinator = make_coordinator()
        assert not coordinator.initialize("https://example.com/about.html")
        await coordinator.start_first_segment(timeout=1)

    with pytest.raises(HapticSyncError):
        asyncio.run(scenario())


def test_initialize_wraps_source_errors():
    """Test that a source that cannot be opened raises a sync error."""
    coordinator = make_coordinator()
    with pytest.raises(HapticSyncError):
        coordinator.initialize("synthetic://track?pattern=bogus")
