"""Time-ordered, queryable assembly of ready segments."""
import bisect
import threading
from typing import NamedTuple, Optional, Tuple
from hapticsync.audio.models import Segment
from hapticsync.core.logging import logger


class _Snapshot(NamedTuple):
    segments: Tuple[Segment, ...]
    starts: Tuple[float, ...]


_EMPTY = _Snapshot((), ())


class Timeline:
    """
    Ordered collection of ready segments for one session.

    There is one writer (the stream producer) and any number of readers
    (playback ticks, status queries). Publishing builds a new snapshot and
    swaps it in with a single assignment, so a reader always works on a
    complete snapshot and never waits on the writer.
    """

    def __init__(self):
        self._snapshot = _EMPTY
        self._write_lock = threading.Lock()

    def publish(self, segment: Segment) -> None:
        """
        Publish a ready segment at its place in time order.

        Segments usually arrive in increasing index order, but a seek back into
        audio that was skipped fills the hole later.

        Args:
            segment: Segment in READY state with at least one frame

        Raises:
            ValueError: If the segment is not ready or its index is already published
        """
        if not segment.is_ready or segment.n_frames == 0:
            raise ValueError(f"Only ready, non-empty segments can be published (segment {segment.index})")

        with self._write_lock:
            current = self._snapshot
            position = bisect.bisect_right(current.starts, segment.start_time)
            before = current.segments[position - 1] if position > 0 else None
            after = current.segments[position] if position < len(current.segments) else None
            if before is not None and before.index >= segment.index:
                raise ValueError(f"Segment {segment.index} is out of order after segment {before.index}")
            if after is not None and after.index <= segment.index:
                raise ValueError(f"Segment {segment.index} is out of order before segment {after.index}")
            self._snapshot = _Snapshot(
                current.segments[:position] + (segment,) + current.segments[position:],
                current.starts[:position] + (segment.start_time,) + current.starts[position:],
            )

        logger.debug(
            f"Timeline: published segment {segment.index} "
            f"[{segment.start_time:.2f}s, {segment.end_time:.2f}s) with {segment.n_frames} frames"
        )

    def clear(self) -> None:
        """Drop every segment (new session)."""
        with self._write_lock:
            old = self._snapshot
            self._snapshot = _EMPTY
        for segment in old.segments:
            segment.release_samples()

    def release_samples(self) -> None:
        """Free any raw sample buffers still attached to published segments."""
        for segment in self._snapshot.segments:
            segment.release_samples()

    @property
    def segments(self) -> Tuple[Segment, ...]:
        return self._snapshot.segments

    @property
    def segment_count(self) -> int:
        return len(self._snapshot.segments)

    @property
    def duration(self) -> float:
        """End time of the last published segment."""
        segments = self._snapshot.segments
        return segments[-1].end_time if segments else 0.0

    @property
    def analyzed_duration(self) -> float:
        """End of the gap-free run of segments starting at index 0."""
        end = 0.0
        for expected, segment in enumerate(self._snapshot.segments):
            if segment.index != expected:
                break
            end = segment.end_time
        return end

    def indices(self) -> list[int]:
        return [segment.index for segment in self._snapshot.segments]

    def segment_for_time(self, time_seconds: float) -> Optional[Segment]:
        """Published segment covering a time, or None."""
        snapshot = self._snapshot
        position = bisect.bisect_right(snapshot.starts, time_seconds) - 1
        if position < 0:
            return None
        segment = snapshot.segments[position]
        return segment if segment.covers(time_seconds) else None

    def has_data(self, time_seconds: float) -> bool:
        """Whether an intensity is available for this time."""
        return self.segment_for_time(time_seconds) is not None

    def frame_index_at(self, time_seconds: float) -> Tuple[int, int]:
        """
        Locate the frame covering a time.

        Returns:
            (segment index, frame index within that segment)

        Raises:
            LookupError: If no published segment covers the time
        """
        segment = self._require(time_seconds)
        return segment.index, segment.frame_index_at(time_seconds)

    def intensity_at(self, time_seconds: float) -> float:
        """
        Haptic intensity of the frame covering a time.

        Raises:
            LookupError: If has_data(time_seconds) is False
        """
        segment = self._require(time_seconds)
        return float(segment.intensities[segment.frame_index_at(time_seconds)])

    def accent_at(self, time_seconds: float) -> float:
        """Voice/high accent pulse of the frame covering a time."""
        segment = self._require(time_seconds)
        if len(segment.accents) == 0:
            return 0.0
        return float(segment.accents[min(segment.frame_index_at(time_seconds), len(segment.accents) - 1)])

    def _require(self, time_seconds: float) -> Segment:
        segment = self.segment_for_time(time_seconds)
        if segment is None:
            raise LookupError(f"No haptic data for time {time_seconds:.3f}s")
        return segment
