"""
Capture stream.

Pulls microphone audio in fixed time slices and hands encoded chunks to
a sink (normally the session channel). Runs on its own task so inbound
event handling never delays outbound audio.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from core.errors import DeviceError, SessionConnectionError
from core.logger import get_logger
from devices.base import AudioInputDevice

from .codec import AudioChunkCodec
from .models import OutboundAudioChunk

logger = get_logger(__name__)

ChunkSink = Callable[[OutboundAudioChunk], Awaitable[None]]
CaptureErrorHandler = Callable[[Exception], Any]


class CaptureStream:
    """Periodic microphone reader that never emits empty slices."""

    def __init__(
        self,
        device: AudioInputDevice,
        codec: AudioChunkCodec,
        sink: ChunkSink,
        sample_rate: int = 16000,
        channels: int = 1,
        encoding: str = "linear16",
        time_slice: float = 0.1,
    ):
        self._device = device
        self._codec = codec
        self._sink = sink
        self.sample_rate = sample_rate
        self.channels = channels
        self.encoding = encoding
        self.time_slice = time_slice
        self._task: asyncio.Task | None = None
        self._on_error: CaptureErrorHandler | None = None
        self.chunks_sent = 0
        self.chunks_dropped = 0

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_error_handler(self, on_error: CaptureErrorHandler | None) -> None:
        """Called with the DeviceError that ends a running capture."""
        self._on_error = on_error

    async def start(self) -> None:
        """
        Open the microphone and begin emitting chunks.

        Raises:
            ConfigurationError: If the remote side does not accept the encoding
            DeviceError: If the microphone cannot be opened
        """
        if self.is_active:
            return

        self._codec.negotiate(self.encoding)
        await asyncio.to_thread(self._device.open, self.sample_rate, self.channels)

        self._task = asyncio.create_task(self._capture_loop(), name="capture-stream")
        logger.info(
            f"Capture started ({self.encoding}, {self.sample_rate} Hz, "
            f"{self.channels} ch, {int(self.time_slice * 1000)} ms slices)"
        )

    async def stop(self) -> None:
        """Stop emitting and release the microphone. Idempotent."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._device.is_open:
            self._device.close()
            logger.info(f"Capture stopped (sent={self.chunks_sent}, dropped={self.chunks_dropped})")

    async def _capture_loop(self) -> None:
        next_tick = time.monotonic()
        while True:
            next_tick += self.time_slice
            await asyncio.sleep(max(0.0, next_tick - time.monotonic()))
            try:
                await self.flush()
            except DeviceError as e:
                logger.error(f"Microphone failed, capture stopped: {e}")
                self._task = None
                if self._device.is_open:
                    self._device.close()
                if self._on_error:
                    self._on_error(e)
                return

    async def flush(self) -> bool:
        """
        Emit whatever was captured since the previous slice.

        Returns:
            True if a chunk was handed to the sink

        Raises:
            DeviceError: If the microphone can no longer be read
        """
        data = self._device.read()
        if not data:
            return False

        chunk = OutboundAudioChunk(data=self._codec.encode(data), timestamp=time.monotonic())
        try:
            await self._sink(chunk)
        except SessionConnectionError as e:
            # Expected while the channel is reconnecting
            self.chunks_dropped += 1
            logger.debug(f"Dropping audio chunk: {e}")
            return False
        except Exception as e:
            self.chunks_dropped += 1
            logger.error(f"Failed to send audio chunk: {e}", exc_info=True)
            return False

        self.chunks_sent += 1
        return True
