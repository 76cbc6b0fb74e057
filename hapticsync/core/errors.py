"""
Exceptions raised by the haptic sync engine.

All of them inherit from HapticSyncError. None of them is allowed to escape
into the player's playback control path; the sync service catches them at its
boundary and turns them into notifications.
"""
from typing import Optional


class HapticSyncError(Exception):
    """Base exception for all sync engine errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FetchError(HapticSyncError):
    """Raised when a segment's audio could not be fetched from the source"""

    def __init__(self, message: str, segment_index: int, url: Optional[str] = None):
        super().__init__(message, {"segment_index": segment_index, "url": url})
        self.segment_index = segment_index
        self.url = url


class DecodeError(HapticSyncError):
    """Raised when fetched data could not be turned into PCM samples"""

    def __init__(self, message: str, segment_index: int, url: Optional[str] = None):
        super().__init__(message, {"segment_index": segment_index, "url": url})
        self.segment_index = segment_index
        self.url = url


class AnalysisError(HapticSyncError):
    """Raised when the analyzer fails on a decoded segment"""

    def __init__(self, message: str, segment_index: int):
        super().__init__(message, {"segment_index": segment_index})
        self.segment_index = segment_index


class FirstSegmentTimeoutError(HapticSyncError):
    """Raised when segment 0 is not ready within the bounded wait"""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Timeout waiting for first segment after {timeout_seconds:.0f}s",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class DeviceNotConnectedError(HapticSyncError):
    """Raised by device implementations asked to actuate while disconnected"""

    def __init__(self, device_name: str):
        super().__init__(f"Haptic device not connected: {device_name}", {"device": device_name})
        self.device_name = device_name
