"""
Abstract Audio Device Interface

Capture and render primitives used by the session engine. Concrete
devices may do their blocking work on worker threads; they report back
to the event loop only through PlaybackHandle's thread-safe methods.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from session.models import PlaybackUnit


class PlaybackHandle:
    """
    A single in-flight render.

    Cancelable at every point of its lifetime: ``stop()`` may be called
    before the device has written a single frame.
    """

    def __init__(self, unit: PlaybackUnit, loop: asyncio.AbstractEventLoop | None = None):
        self.unit = unit
        self._loop = loop or asyncio.get_running_loop()
        self._finished = asyncio.Event()
        self._stopped = threading.Event()
        self._released = False
        self._release_callbacks: list[Callable[[], None]] = []

    @property
    def stopped(self) -> bool:
        """True once stop() was requested (safe to poll from device threads)."""
        return self._stopped.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def on_release(self, callback: Callable[[], None]) -> None:
        """Register a callback that frees device resources held by this render."""
        self._release_callbacks.append(callback)

    def finish(self) -> None:
        """Mark rendering complete. Must be called on the event loop."""
        self._finished.set()

    def finish_threadsafe(self) -> None:
        """Mark rendering complete from a device thread."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.finish)

    def stop(self) -> None:
        """Halt rendering immediately."""
        self._stopped.set()
        self._finished.set()

    async def wait(self) -> None:
        await self._finished.wait()

    def release(self) -> None:
        """Run release callbacks once."""
        if self._released:
            return
        self._released = True
        callbacks, self._release_callbacks = self._release_callbacks, []
        for callback in callbacks:
            callback()


class AudioOutputDevice(ABC):
    """Speaker side: renders PlaybackUnits one handle at a time."""

    @abstractmethod
    def start(self, unit: PlaybackUnit) -> PlaybackHandle:
        """
        Begin rendering ``unit`` and return immediately.

        Raises:
            DeviceError: If the render device is unavailable
        """
        pass

    def close(self) -> None:
        """Release the device. Optional; base does nothing."""
        return


class AudioInputDevice(ABC):
    """Microphone side: accumulates captured PCM16 until read()."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def open(self, sample_rate: int, channels: int) -> None:
        """
        Open the capture device.

        Raises:
            DeviceError: If the capture device is unavailable
        """
        pass

    @abstractmethod
    def read(self) -> bytes:
        """Return (and forget) everything captured since the previous read."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the capture device. Idempotent."""
        pass
