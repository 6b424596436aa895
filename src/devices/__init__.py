"""
Devices Package

Abstract capture/render primitives used by the session engine.

PyAudio implementations are imported lazily by the entry point to avoid
a hard PortAudio dependency in headless deployments and tests:
    from devices.pyaudio_device import PyAudioInput, PyAudioOutput
"""

from .base import AudioInputDevice, AudioOutputDevice, PlaybackHandle

__all__ = [
    "AudioInputDevice",
    "AudioOutputDevice",
    "PlaybackHandle",
]
