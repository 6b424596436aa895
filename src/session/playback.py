"""
Ordered playback queue.

Decoded speech is rendered strictly in arrival order by a single consumer
task, so at most one unit is ever rendering. ``cancel_all`` is effective
immediately: it halts the current render and discards everything queued,
including units the consumer has already dequeued but not yet started.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from core.errors import DeviceError
from core.logger import get_logger
from devices.base import AudioOutputDevice, PlaybackHandle

from .models import PlaybackUnit

logger = get_logger(__name__)


class PlaybackQueue:
    """
    FIFO buffer of PlaybackUnits with serialized, non-overlapping playback.

    The current render handle is written only by this class and is set
    if and only if a unit is actively rendering.
    """

    def __init__(
        self,
        device: AudioOutputDevice,
        on_error: Callable[[Exception], Any] | None = None,
    ):
        self._device = device
        self._on_error = on_error
        self._queue: asyncio.Queue[tuple[int, PlaybackUnit]] = asyncio.Queue()
        self._generation = 0
        self._current: PlaybackHandle | None = None
        self._consumer_task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.units_played = 0
        self.units_cancelled = 0

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> PlaybackHandle | None:
        return self._current

    @property
    def pending(self) -> int:
        """Number of units waiting behind the current render."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    def start(self) -> None:
        """Start the consumer task (no-op if already running)."""
        if not self.is_running:
            self._consumer_task = asyncio.create_task(self._playback_loop(), name="playback-queue")

    async def stop(self) -> None:
        """Cancel everything and stop the consumer task."""
        self.cancel_all()
        task, self._consumer_task = self._consumer_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def enqueue(self, unit: PlaybackUnit) -> None:
        """
        Queue a unit for playback and return immediately.

        Playback starts as soon as nothing else is rendering.
        """
        self._queue.put_nowait((self._generation, unit))
        self._idle.clear()
        self.start()

    def cancel_all(self) -> int:
        """
        Stop the active render and drop every queued unit.

        Interrupted speech is discarded, never resumed.

        Returns:
            Number of units cancelled (queued plus the one rendering)
        """
        self._generation += 1

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dropped += 1

        current, self._current = self._current, None
        if current is not None:
            current.stop()
            current.release()
            dropped += 1

        if dropped:
            self.units_cancelled += dropped
            logger.info(f"Playback cancelled ({dropped} unit(s) dropped)")
        self._update_idle()
        return dropped

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until nothing is rendering and nothing is queued."""

        await asyncio.wait_for(self._idle.wait(), timeout)

    def _update_idle(self) -> None:
        if self._current is None and self._queue.empty():
            self._idle.set()
        else:
            self._idle.clear()

    async def _playback_loop(self) -> None:
        while True:
            generation, unit = await self._queue.get()
            if generation != self._generation:
                # Dequeued before a cancel_all was observed
                self._update_idle()
                continue
            await self._play(unit)
            self._update_idle()

    async def _play(self, unit: PlaybackUnit) -> None:
        try:
            handle = self._device.start(unit)
        except DeviceError as e:
            logger.error(f"Playback device error, dropping unit: {e}")
            if self._on_error:
                self._on_error(e)
            return

        self._current = handle
        try:
            await handle.wait()
        finally:
            if self._current is handle:
                self._current = None
                if not handle.stopped:
                    self.units_played += 1
            handle.release()
