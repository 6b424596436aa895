"""
Tests for AudioChunkCodec: payload decoding, encoding and negotiation.
"""

import base64
import io
import wave

import numpy as np
import pytest

import fakes  # noqa: F401  (puts src on sys.path)

from core.errors import ConfigurationError, DecodeError
from session.codec import AudioChunkCodec


def _wav_b64(pcm: bytes, sample_rate: int = 22050, channels: int = 1) -> str:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode()


def test_decode_wav_uses_embedded_format():
    pcm = np.arange(200, dtype=np.int16).tobytes()
    codec = AudioChunkCodec(output_sample_rate=24000)

    unit = codec.decode(_wav_b64(pcm, sample_rate=22050, channels=2), source_id="chunk-1")

    assert unit.pcm == pcm
    assert unit.sample_rate == 22050
    assert unit.channels == 2
    assert unit.sample_width == 2
    assert unit.source_id == "chunk-1"
    assert unit.frame_count == 100


def test_decode_raw_pcm_uses_output_format():
    pcm = b"\x01\x00" * 480
    codec = AudioChunkCodec(output_sample_rate=24000)

    unit = codec.decode(base64.b64encode(pcm).decode())

    assert unit.pcm == pcm
    assert unit.sample_rate == 24000
    assert unit.duration == pytest.approx(0.02)


@pytest.mark.parametrize("payload", ["", "not base64 !!", base64.b64encode(b"\x01\x02\x03").decode()])
def test_decode_rejects_bad_payloads(payload):
    with pytest.raises(DecodeError):
        AudioChunkCodec().decode(payload)


def test_decode_rejects_truncated_wav():
    raw = base64.b64decode(_wav_b64(b"\x00\x00" * 50))
    truncated = base64.b64encode(raw[:20]).decode()

    with pytest.raises(DecodeError):
        AudioChunkCodec().decode(truncated)


def test_encode_bytes_is_base64():
    pcm = b"\x10\x00\x20\x00"

    assert base64.b64decode(AudioChunkCodec.encode(pcm)) == pcm


def test_encode_float32_converts_to_pcm16():
    samples = np.array([0.0, 1.0, -1.0, 2.0], dtype=np.float32)

    decoded = np.frombuffer(base64.b64decode(AudioChunkCodec.encode(samples)), dtype=np.int16)

    assert decoded.tolist() == [0, 32767, -32768, 32767]


def test_negotiate():
    assert AudioChunkCodec.negotiate("LINEAR16") == "linear16"
    with pytest.raises(ConfigurationError):
        AudioChunkCodec.negotiate("opus")
