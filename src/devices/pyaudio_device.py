"""
PyAudio Devices

Microphone capture and speaker playback on top of PortAudio.
Blocking PortAudio work runs on PortAudio's callback thread (capture) or
a worker thread per render over a cached stream (playback); results are
handed back to the event loop through PlaybackHandle.
"""

import asyncio
import threading
from typing import Any

import pyaudio

from core.errors import DeviceError
from core.logger import get_logger
from session.models import PlaybackUnit

from .base import AudioInputDevice, AudioOutputDevice, PlaybackHandle

logger = get_logger(__name__)

FORMAT = pyaudio.paInt16
CHUNK_SIZE = 1024

# Playback is written in short blocks so stop() takes effect within one block
_WRITE_BLOCK_MS = 20


class PyAudioInput(AudioInputDevice):
    """Default microphone, PCM16, buffered until read()."""

    def __init__(self, device_index: int | None = None, pya: pyaudio.PyAudio | None = None):
        self._device_index = device_index
        self._pya = pya
        self._owns_pya = pya is None
        self._stream = None
        self._buffer = bytearray()
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _on_audio(self, in_data, frame_count, time_info, status):
        if status:
            logger.debug(f"Capture status flags: {status}")
        with self._lock:
            self._buffer.extend(in_data)
        return (None, pyaudio.paContinue)

    def open(self, sample_rate: int, channels: int) -> None:
        if self._stream is not None:
            return

        try:
            if self._pya is None:
                self._pya = pyaudio.PyAudio()
            if self._device_index is None:
                mic_info = self._pya.get_default_input_device_info()
                device_index = int(mic_info["index"])
                logger.info(f"Opening microphone: {mic_info['name']}")
            else:
                device_index = self._device_index

            self._stream = self._pya.open(
                format=FORMAT,
                channels=channels,
                rate=sample_rate,
                input=True,
                input_device_index=device_index,
                frames_per_buffer=CHUNK_SIZE,
                stream_callback=self._on_audio,
            )
            self._stream.start_stream()
        except OSError as e:
            self._stream = None
            raise DeviceError(f"Microphone unavailable: {e}") from e

    def read(self) -> bytes:
        with self._lock:
            data = bytes(self._buffer)
            self._buffer.clear()
        return data

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing microphone stream: {e}")
        with self._lock:
            self._buffer.clear()
        if self._owns_pya and self._pya is not None:
            self._pya.terminate()
            self._pya = None


class PyAudioOutput(AudioOutputDevice):
    """
    Default speaker.

    One output stream is opened per audio format and reused by every later
    unit of that format, so only the first unit pays PortAudio's open cost
    on the event loop. Each render writes from its own worker thread; a
    per-stream lock keeps a stopped render's last block from interleaving
    with the next unit.
    """

    def __init__(self, device_index: int | None = None, pya: pyaudio.PyAudio | None = None):
        self._device_index = device_index
        self._pya = pya or pyaudio.PyAudio()
        self._owns_pya = pya is None
        self._streams: dict[tuple[int, int, int], tuple[Any, threading.Lock]] = {}
        self._streams_lock = threading.Lock()

    def _stream_for(self, unit: PlaybackUnit) -> tuple[Any, threading.Lock]:
        key = (unit.sample_rate, unit.channels, unit.sample_width)
        with self._streams_lock:
            cached = self._streams.get(key)
            if cached is not None:
                return cached

            try:
                stream = self._pya.open(
                    format=self._pya.get_format_from_width(unit.sample_width),
                    channels=unit.channels,
                    rate=unit.sample_rate,
                    output=True,
                    output_device_index=self._device_index,
                )
            except (OSError, ValueError) as e:
                raise DeviceError(f"Speaker unavailable: {e}") from e

            logger.debug(f"Opened speaker stream {key}")
            cached = self._streams[key] = (stream, threading.Lock())
            return cached

    def _discard_stream(self, stream: Any) -> None:
        with self._streams_lock:
            for key, (cached, _) in list(self._streams.items()):
                if cached is stream:
                    del self._streams[key]
        self._close_stream(stream)

    @staticmethod
    def _close_stream(stream: Any) -> None:
        try:
            stream.stop_stream()
            stream.close()
        except OSError as e:
            logger.warning(f"Error closing speaker stream: {e}")

    def start(self, unit: PlaybackUnit) -> PlaybackHandle:
        handle = PlaybackHandle(unit, asyncio.get_running_loop())
        stream, write_lock = self._stream_for(unit)

        def render() -> None:
            frame_size = unit.channels * unit.sample_width
            block = max(frame_size, int(unit.sample_rate * _WRITE_BLOCK_MS / 1000) * frame_size)
            try:
                with write_lock:
                    for offset in range(0, len(unit.pcm), block):
                        if handle.stopped:
                            break
                        stream.write(unit.pcm[offset : offset + block])
            except OSError as e:
                logger.warning(f"Playback write failed, reopening on next unit: {e}")
                self._discard_stream(stream)
            finally:
                handle.finish_threadsafe()

        threading.Thread(target=render, name="playback-render", daemon=True).start()
        return handle

    def close(self) -> None:
        with self._streams_lock:
            streams, self._streams = list(self._streams.values()), {}
        for stream, write_lock in streams:
            with write_lock:
                self._close_stream(stream)
        if self._owns_pya and self._pya is not None:
            self._pya.terminate()
            self._pya = None
