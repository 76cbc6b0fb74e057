#!/usr/bin/env python3
"""
Synthetic Player Client - Tests the backend without a browser or a real video.

Plays a synthetic:// "drop" track (silence, then a bass tone, every period) by
sending the same lifecycle and position reports a video player would, and
prints the notifications and session status the backend returns.
"""
import asyncio
import json
import sys
import logging
import requests
import websockets

# Setup basic logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# Server configuration
SERVER_URL = "ws://localhost:8000/ws/sync"
STATUS_URL = "http://localhost:8000/sessions/{session_id}/status"

# Test parameters
VIDEO_URL = "synthetic://track?pattern=drop&seconds=60&period=20&quiet=1"
TICK_INTERVAL_MS = 250  # how often the player reports its position
PLAY_SECONDS = 8.0      # playback time simulated before the seek
SEEK_TO = 45.0          # seek target (inside the last segment)
PAUSE_TICKS = 4         # ticks reported while paused


async def read_notifications(websocket, until_type=None, timeout=0.05):
    """Print notifications until one of until_type arrives, or none is pending."""
    while True:
        try:
            message = await asyncio.wait_for(websocket.recv(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        data = json.loads(message)
        kind = data.get("type")
        details = {k: v for k, v in data.items() if k not in ("type", "timestamp")}
        print(f"  <- {kind:22s} {details}")
        if until_type is not None and kind == until_type:
            return data


async def play(websocket, start, seconds, paused=False):
    """Send position ticks as a playing (or paused) player would."""
    position = start
    step = TICK_INTERVAL_MS / 1000.0
    while position < start + seconds:
        await websocket.send(json.dumps({"type": "tick", "current_time": position, "paused": paused}))
        await read_notifications(websocket)
        await asyncio.sleep(step)
        if not paused:
            position += step
    return position


def print_status(session_id):
    """Fetch and print the session status from the REST API."""
    response = requests.get(STATUS_URL.format(session_id=session_id), timeout=5)
    response.raise_for_status()
    status = response.json()
    print(f"  state={status['state']} position={status['position']}s "
          f"segments={status['segment_indices']} analyzed={status['analyzed_duration']}s "
          f"lookahead={status['lookahead_ms']}ms")


async def test_backend():
    """Main test function."""
    print("=" * 70)
    print("Haptic Sync Backend - Synthetic Player Client")
    print("=" * 70)
    print(f"Server: {SERVER_URL}")
    print(f"Video:  {VIDEO_URL}")
    print("=" * 70 + "\n")

    try:
        async with websockets.connect(SERVER_URL, ping_interval=None) as websocket:
            hello = json.loads(await websocket.recv())
            session_id = hello["session_id"]
            print(f"✓ Connected to server, session {session_id}\n")

            print("Video detected, waiting for the first segment...")
            await websocket.send(json.dumps({"type": "video_detected", "url": VIDEO_URL}))
            completed = await read_notifications(websocket, until_type="processing_completed", timeout=30.0)
            if completed is None:
                print("\n✗ ERROR: processing did not complete")
                sys.exit(1)

            print(f"\nPlaying {PLAY_SECONDS:.0f}s...")
            position = await play(websocket, 0.0, PLAY_SECONDS)
            print_status(session_id)

            print(f"\nPausing for {PAUSE_TICKS} ticks...")
            await play(websocket, position, PAUSE_TICKS * TICK_INTERVAL_MS / 1000.0, paused=True)
            print_status(session_id)

            print(f"\nSeeking to {SEEK_TO:.0f}s...")
            await websocket.send(json.dumps({"type": "seek", "time": SEEK_TO}))
            await play(websocket, SEEK_TO, 3.0)
            await read_notifications(websocket, timeout=1.0)
            print_status(session_id)

            print("\nVideo ended")
            await websocket.send(json.dumps({"type": "ended"}))
            await read_notifications(websocket, timeout=0.5)
            print_status(session_id)

            print("\n" + "=" * 70)
            print("✓ Test completed successfully!")

    except (ConnectionRefusedError, OSError):
        print("\n✗ ERROR: Could not connect to server at", SERVER_URL)
        print("  Make sure the backend is running:")
        print("    python -m uvicorn hapticsync.main:app --reload")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ ERROR: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(test_backend())
    except KeyboardInterrupt:
        print("\n\nExiting...")
