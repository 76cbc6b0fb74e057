"""Test doubles shared by the coordinator and service tests."""
import asyncio
from hapticsync.audio.sources import SyntheticSource


class FailingSource(SyntheticSource):
    """Synthetic source whose fetch fails for chosen segment start times."""

    def __init__(self, url, fail_at=(), delay=0.0, delay_from=0.0):
        super().__init__(url)
        self.fail_at = set(fail_at)
        self.delay = delay
        self.delay_from = delay_from

    async def fetch(self, start_time, duration):
        if self.delay and start_time >= self.delay_from:
            await asyncio.sleep(self.delay)
        if start_time in self.fail_at:
            raise ConnectionError(f"connection reset at {start_time}s")
        return await super().fetch(start_time, duration)
