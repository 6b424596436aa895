"""
Audio chunk codec.

Encodes raw microphone buffers for transmission and decodes received
speech into playable units. Provides helpers for:
- Base64 encoding/decoding of audio data
- WAV container parsing
- Float32 to PCM16 conversion
"""

import base64
import binascii
import io
import wave

import numpy as np

from core.errors import ConfigurationError, DecodeError

from .models import PlaybackUnit

SUPPORTED_ENCODINGS = ("linear16",)


class AudioChunkCodec:
    """Converts between device PCM and the remote side's audio payloads."""

    def __init__(self, output_sample_rate: int = 24000, output_channels: int = 1):
        self.output_sample_rate = output_sample_rate
        self.output_channels = output_channels

    @staticmethod
    def negotiate(encoding: str) -> str:
        """
        Confirm the remote side accepts ``encoding`` for audio input.

        Raises:
            ConfigurationError: If the encoding is not supported
        """
        normalized = (encoding or "").strip().lower()
        if normalized not in SUPPORTED_ENCODINGS:
            raise ConfigurationError(
                f'Capture encoding "{encoding}" is not accepted by the remote side '
                f"(supported: {', '.join(SUPPORTED_ENCODINGS)})"
            )
        return normalized

    @staticmethod
    def encode(pcm: bytes | np.ndarray) -> str:
        """
        Encode captured audio as base64 text.

        Args:
            pcm: PCM16 bytes, or a numpy array (float32 is converted to PCM16)

        Returns:
            Base64 encoded string
        """
        if isinstance(pcm, np.ndarray):
            if pcm.dtype == np.float32:
                pcm = AudioChunkCodec.float_to_pcm16(pcm)
            else:
                pcm = pcm.astype(np.int16).tobytes()
        return base64.b64encode(pcm).decode("utf-8")

    def decode(self, data: str, source_id: str | None = None) -> PlaybackUnit:
        """
        Decode a received audio payload into a PlaybackUnit.

        WAV payloads carry their own format; anything else is treated as
        PCM16 at the configured output rate.

        Raises:
            DecodeError: If the payload is empty, not base64, or a broken WAV
        """
        if not data:
            raise DecodeError("Empty audio payload")

        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Audio payload is not valid base64: {e}") from e

        if not raw:
            raise DecodeError("Empty audio payload")

        if raw[:4] == b"RIFF" and raw[8:12] == b"WAVE":
            return self._decode_wav(raw, source_id)

        frame_size = self.output_channels * 2
        if len(raw) % frame_size:
            raise DecodeError(f"PCM16 payload of {len(raw)} bytes is not a whole number of frames")

        return PlaybackUnit(
            pcm=raw,
            sample_rate=self.output_sample_rate,
            channels=self.output_channels,
            sample_width=2,
            source_id=source_id,
        )

    @staticmethod
    def _decode_wav(raw: bytes, source_id: str | None) -> PlaybackUnit:
        try:
            with wave.open(io.BytesIO(raw), "rb") as wav:
                frames = wav.readframes(wav.getnframes())
                unit = PlaybackUnit(
                    pcm=frames,
                    sample_rate=wav.getframerate(),
                    channels=wav.getnchannels(),
                    sample_width=wav.getsampwidth(),
                    source_id=source_id,
                )
        except (wave.Error, EOFError) as e:
            raise DecodeError(f"Malformed WAV payload: {e}") from e

        if not unit.pcm:
            raise DecodeError("WAV payload contains no frames")
        return unit

    @staticmethod
    def float_to_pcm16(float32_array: np.ndarray) -> bytes:
        """
        Converts float32 amplitude data (-1.0 to 1.0) to PCM16 bytes.
        """
        clipped = np.clip(float32_array, -1.0, 1.0)
        int16_array = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF).astype(np.int16)
        return int16_array.tobytes()
