"""
Voice Session

High-level entry point that wires the engine together:

    microphone -> CaptureStream -> AudioChunkCodec -> SessionChannel
    SessionChannel -> EventDispatcher -> {PlaybackQueue, ToolInvocationBridge, transcript}

Usage:
    async with VoiceSession(mic, speaker) as voice:
        await voice.connect()
        await voice.wait_closed()
"""

import asyncio
from typing import Any

from agents.tool_bridge import ToolInvocationBridge
from agents.tool_definitions import default_tool_declarations
from core.logger import get_logger
from core.settings import Settings, get_settings
from devices.base import AudioInputDevice, AudioOutputDevice

from .capture import CaptureStream
from .channel import ConnectionParams, SessionChannel, WebSocketSessionChannel
from .codec import AudioChunkCodec
from .dispatcher import ErrorCallback, EventDispatcher, TranscriptSink
from .events import AudioInput
from .models import ConnectionState, OutboundAudioChunk, Session, TranscriptEntry
from .playback import PlaybackQueue
from .transcript import TranscriptLog

logger = get_logger(__name__)


class VoiceSession:
    """
    One logical voice conversation, possibly spanning several connections.

    Collaborators default to the production implementations built from
    settings; any of them may be injected.
    """

    def __init__(
        self,
        input_device: AudioInputDevice,
        output_device: AudioOutputDevice,
        settings: Settings | None = None,
        channel: SessionChannel | None = None,
        bridge: ToolInvocationBridge | None = None,
        transcript_sink: TranscriptSink | None = None,
        on_error: ErrorCallback | None = None,
        tools: tuple[dict[str, Any], ...] | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.channel = channel or WebSocketSessionChannel(
            url=s.evi_url,
            api_key=s.hume_api_key,
            connect_timeout=s.evi_connect_timeout,
            debug=s.debug,
        )
        self.bridge = bridge or ToolInvocationBridge(
            base_url=s.agent_base_url,
            agent_name=s.agent_name,
            timeout=s.agent_timeout,
        )
        self.codec = AudioChunkCodec(output_sample_rate=s.output_sample_rate, output_channels=s.output_channels)
        self.transcript = TranscriptLog()

        self._output_device = output_device
        self._transcript_sink = transcript_sink
        self._on_error = on_error

        self.playback = PlaybackQueue(output_device, on_error=self._report_error)
        self.capture = CaptureStream(
            device=input_device,
            codec=self.codec,
            sink=self._send_audio,
            sample_rate=s.input_sample_rate,
            channels=s.input_channels,
            encoding=s.capture_encoding,
            time_slice=s.capture_time_slice,
        )

        params = ConnectionParams(
            config_id=s.hume_config_id,
            tools=tools if tools is not None else default_tool_declarations(),
            encoding=s.capture_encoding,
            sample_rate=s.input_sample_rate,
            channels=s.input_channels,
        )
        self.dispatcher = EventDispatcher(
            channel=self.channel,
            codec=self.codec,
            playback=self.playback,
            capture=self.capture,
            bridge=self.bridge,
            params=params,
            settings=s,
            transcript_sink=self._record_transcript,
            on_error=self._report_error,
        )

    @property
    def session(self) -> Session:
        return self.dispatcher.session

    @property
    def state(self) -> ConnectionState:
        return self.dispatcher.session.state

    @property
    def chat_group_id(self) -> str | None:
        """Pass this to connect() later to resume the conversation."""
        return self.dispatcher.session.chat_group_id

    async def connect(
        self,
        resumed_chat_group_id: str | None = None,
        wait: bool = True,
        timeout: float | None = None,
    ) -> Session:
        """
        Connect to the remote voice interface and start the conversation.

        Args:
            resumed_chat_group_id: Continue an earlier conversation
            wait: Return only once the session is open and capturing
            timeout: Seconds to wait for the session to open

        Raises:
            SessionConnectionError: If the handshake fails
        """
        self.playback.start()
        session = await self.dispatcher.connect(resumed_chat_group_id)
        if wait:
            await self.dispatcher.wait_until_open(timeout or self.settings.evi_connect_timeout)
        return session

    async def disconnect(self) -> None:
        await self.dispatcher.disconnect()

    async def wait_closed(self) -> None:
        await self.dispatcher.wait_closed()

    async def aclose(self) -> None:
        """Disconnect and release every resource held by the session."""
        await self.disconnect()
        await self.playback.stop()
        await self.dispatcher.stop()
        await self.bridge.aclose()
        self._output_device.close()

    async def __aenter__(self) -> "VoiceSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _send_audio(self, chunk: OutboundAudioChunk) -> None:
        await self.channel.send(AudioInput(data=chunk.data))

    async def _record_transcript(self, entry: TranscriptEntry) -> None:
        self.transcript(entry)
        if self._transcript_sink is None:
            return
        result = self._transcript_sink(entry)
        if asyncio.iscoroutine(result):
            await result

    def _report_error(self, error: Exception) -> None:
        if self._on_error is None:
            return
        result = self._on_error(error)
        if asyncio.iscoroutine(result):
            asyncio.create_task(result)
