"""Haptic device contract, a mock device, and the ordered command dispatcher."""
import asyncio
from typing import List, Optional, Protocol, Tuple
from hapticsync.audio.buffers import DropOldestQueue
from hapticsync.core.config import settings
from hapticsync.core.errors import DeviceNotConnectedError
from hapticsync.core.logging import logger


class HapticDevice(Protocol):
    """What the sync engine needs from a physical actuator driver."""

    name: str

    @property
    def is_connected(self) -> bool:
        ...

    @property
    def anticipation_latency_ms(self) -> int:
        ...

    async def set_intensity(self, value: float) -> None:
        ...

    async def stop(self) -> None:
        ...


class MockHapticDevice:
    """
    Device stand-in that records every command.

    Args:
        latency_ms: Anticipation latency the device reports
        connected: Initial connection state
        delay: Artificial round-trip time per command, in seconds
        fail: Raise on every command (exercises error isolation)
    """

    name = "Mock (Testing)"

    def __init__(
        self,
        latency_ms: Optional[int] = None,
        connected: bool = True,
        delay: float = 0.0,
        fail: bool = False,
    ):
        self._latency_ms = settings.mock_device_latency_ms if latency_ms is None else latency_ms
        self._connected = connected
        self.delay = delay
        self.fail = fail
        self.commands: List[Tuple[str, Optional[float]]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def anticipation_latency_ms(self) -> int:
        return self._latency_ms

    def connect(self) -> None:
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    @property
    def intensities(self) -> List[float]:
        return [value for kind, value in self.commands if kind == "intensity"]

    @property
    def stop_count(self) -> int:
        return sum(1 for kind, _ in self.commands if kind == "stop")

    async def _command(self, kind: str, value: Optional[float]) -> None:
        if not self._connected:
            raise DeviceNotConnectedError(self.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{self.name}: simulated device failure")
        self.commands.append((kind, value))

    async def set_intensity(self, value: float) -> None:
        await self._command("intensity", max(0.0, min(1.0, value)))

    async def stop(self) -> None:
        await self._command("stop", None)


def create_haptic_device(kind: Optional[str] = None) -> HapticDevice:
    """
    Build the device configured for the service.

    Args:
        kind: Device kind (defaults to config value)
    """
    kind = (kind or settings.haptic_device).lower()
    if kind == "mock":
        return MockHapticDevice()
    raise ValueError(f"Unknown haptic device kind: {kind}")


class HapticDispatcher:
    """
    Sends commands to a device from one background task, in issue order.

    Callers on the playback-tick path only enqueue; the device round-trip is
    awaited by the dispatcher task. Device errors are logged, never raised.
    """

    def __init__(self, device: HapticDevice, max_pending: Optional[int] = None):
        self.device = device
        self._queue: DropOldestQueue[Tuple[str, Optional[float]]] = DropOldestQueue(
            "haptic-commands", max_pending or settings.haptic_queue_size
        )
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def _ensure_running(self) -> None:
        if self._closed:
            return
        if self._task is None or self._task.done():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("Haptic dispatcher: no running event loop, command stays queued")
                return
            self._task = loop.create_task(self._run())

    def send_intensity(self, value: float) -> None:
        """Queue an intensity command; returns immediately."""
        if self._closed:
            return
        self._queue.put_nowait(("intensity", value))
        self._ensure_running()

    def send_stop(self) -> None:
        """Discard pending intensities and queue a stop; returns immediately."""
        if self._closed:
            return
        self._queue.clear()
        self._queue.put_nowait(("stop", None))
        self._ensure_running()

    async def _run(self) -> None:
        while True:
            command = await self._queue.get()
            kind, value = command
            try:
                if kind == "stop":
                    await self.device.stop()
                else:
                    await self.device.set_intensity(value)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Haptic dispatcher: failed to send {kind} to {self.device.name}: {e}")
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued command has reached the device."""
        if self._task is not None and not self._task.done():
            await self._queue.join()

    async def close(self) -> None:
        """Cancel the dispatcher task; pending commands are dropped."""
        self._closed = True
        self._queue.clear()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
