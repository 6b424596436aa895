"""
Voice Session Engine

Real-time, bidirectional voice conversation with a remote agent:
microphone audio goes out over a persistent channel, synthesized speech
and conversational events come back and are played in order, with
support for mid-utterance interruption, tool calls and automatic
reconnection.

Usage:
    from session import VoiceSession

    async with VoiceSession(mic, speaker) as voice:
        await voice.connect()
        await voice.wait_closed()
"""

from .capture import CaptureStream
from .channel import ConnectionParams, SessionChannel, WebSocketSessionChannel
from .codec import AudioChunkCodec
from .dispatcher import EventDispatcher
from .emotions import extract_top_emotions
from .engine import VoiceSession
from .models import (
    ConnectionState,
    EmotionScore,
    OutboundAudioChunk,
    PlaybackUnit,
    Session,
    SessionIntent,
    ToolInvocation,
    TranscriptEntry,
)
from .playback import PlaybackQueue
from .transcript import TranscriptLog

__all__ = [
    "AudioChunkCodec",
    "CaptureStream",
    "ConnectionParams",
    "ConnectionState",
    "EmotionScore",
    "EventDispatcher",
    "OutboundAudioChunk",
    "PlaybackQueue",
    "PlaybackUnit",
    "Session",
    "SessionChannel",
    "SessionIntent",
    "ToolInvocation",
    "TranscriptEntry",
    "TranscriptLog",
    "VoiceSession",
    "WebSocketSessionChannel",
    "extract_top_emotions",
]
