"""
Tests for the EventDispatcher state machine.

Verifies that:
1. Transcripts carry the top three emotions, strongest first
2. Every tool call gets exactly one response or error
3. An unexpected close reconnects once with the stored chat group id
4. A caller disconnect never reconnects
5. User interruption empties playback without touching tool calls
6. Capture failures are reported while the session stays open
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fakes import FakeChannel, FakeInputDevice, FakeOutputDevice, wait_until

from agents.tool_bridge import ToolInvocationBridge
from agents.tool_definitions import default_tool_declarations
from core.errors import DeviceError, InvocationAlreadyResolvedError, InvocationError, SessionConnectionError
from core.settings import Settings
from session.capture import CaptureStream
from session.channel import ConnectionParams
from session.codec import AudioChunkCodec
from session.dispatcher import EventDispatcher
from session.events import (
    AudioChunk,
    AudioInput,
    ChatMetadata,
    ToolCallRequest,
    ToolError,
    ToolResponse,
    TranscriptMessage,
    UnknownEvent,
    UserInterruption,
)
from session.models import ConnectionState, SessionIntent, ToolInvocation
from session.playback import PlaybackQueue

PCM_B64 = "AAAAAAAAAAA="  # 4 silent PCM16 frames


class Harness:
    """A dispatcher wired to in-memory devices and channel."""

    def __init__(self, bridge=None, settings=None, input_device=None, fail_connects=0):
        self.channel = FakeChannel(fail_connects=fail_connects)
        self.output = FakeOutputDevice(render_seconds=None)
        self.input = input_device or FakeInputDevice()
        self.codec = AudioChunkCodec()
        self.bridge = bridge or AsyncMock(spec=ToolInvocationBridge)
        self.transcripts = []
        self.errors = []

        self.playback = PlaybackQueue(self.output)
        self.capture = CaptureStream(self.input, self.codec, sink=self._send_audio, time_slice=0.005)
        self.dispatcher = EventDispatcher(
            channel=self.channel,
            codec=self.codec,
            playback=self.playback,
            capture=self.capture,
            bridge=self.bridge,
            params=ConnectionParams(config_id="cfg-1", tools=default_tool_declarations()),
            settings=settings or Settings(reconnect_backoff_base=0.0, reconnect_max_attempts=3),
            transcript_sink=self.transcripts.append,
            on_error=self.errors.append,
        )

    async def _send_audio(self, chunk):
        await self.channel.send(AudioInput(data=chunk.data))

    async def open(self, resumed_chat_group_id=None):
        self.playback.start()
        await self.dispatcher.connect(resumed_chat_group_id)
        await self.dispatcher.wait_until_open(timeout=2.0)

    async def idle(self):
        """Let the inbox drain."""
        await wait_until(lambda: self.dispatcher._inbox.empty())
        await asyncio.sleep(0.01)

    async def shutdown(self):
        await self.dispatcher.disconnect()
        await self.playback.stop()
        await self.dispatcher.stop()


@pytest.fixture
async def harness():
    h = Harness()
    yield h
    await h.shutdown()


# ================================================================
# Transcripts
# ================================================================


async def test_transcript_gets_top_three_emotions(harness):
    await harness.open()

    harness.channel.receive(
        TranscriptMessage(
            role="user",
            text="I'm thrilled",
            emotion_scores={"joy": 0.91, "calm": 0.40, "anger": 0.12, "sadness": 0.05},
        )
    )
    await harness.idle()

    (entry,) = harness.transcripts
    assert entry.role == "user"
    assert entry.content == "I'm thrilled"
    assert [(e.label, e.magnitude) for e in entry.emotions] == [("joy", 0.91), ("calm", 0.40), ("anger", 0.12)]


async def test_interim_transcripts_skipped(harness):
    await harness.open()

    harness.channel.receive(TranscriptMessage(role="user", text="I'm thr", interim=True))
    harness.channel.receive(TranscriptMessage(role="assistant", text="Hello."))
    await harness.idle()

    assert [e.content for e in harness.transcripts] == ["Hello."]
    assert harness.transcripts[0].emotions == ()


# ================================================================
# Tool calls
# ================================================================


async def test_tool_call_success_sends_one_response(harness):
    harness.bridge.invoke.return_value = "ok"
    await harness.open()

    harness.channel.receive(ToolCallRequest(tool_call_id="t1", name="send_message", parameters='{"message":"hi"}'))
    await wait_until(lambda: harness.channel.sent_of(ToolResponse))
    await harness.idle()

    (response,) = harness.channel.sent_of(ToolResponse)
    assert response.tool_call_id == "t1"
    assert response.content == '{"content":"ok"}'
    assert harness.channel.sent_of(ToolError) == []
    harness.bridge.invoke.assert_awaited_once_with("send_message", {"message": "hi"})
    assert harness.dispatcher.pending_invocations == 0


async def test_tool_response_keeps_non_ascii_text(harness):
    harness.bridge.invoke.return_value = "café"
    await harness.open()

    harness.channel.receive(ToolCallRequest(tool_call_id="t1", name="send_message", parameters='{"message":"hi"}'))
    await wait_until(lambda: harness.channel.sent_of(ToolResponse))

    (response,) = harness.channel.sent_of(ToolResponse)
    assert response.content == '{"content":"café"}'


async def test_tool_call_failure_sends_one_error(harness):
    harness.bridge.invoke.side_effect = InvocationError("HTTP error! status: 500")
    await harness.open()

    harness.channel.receive(ToolCallRequest(tool_call_id="t2", name="send_message", parameters='{"message":"hi"}'))
    await wait_until(lambda: harness.channel.sent_of(ToolError))
    await harness.idle()

    (error,) = harness.channel.sent_of(ToolError)
    assert error.tool_call_id == "t2"
    assert error.code == "message_send_error"
    assert error.level == "warn"
    assert error.content == "There was an error sending the message."
    assert "500" in error.error
    assert harness.channel.sent_of(ToolResponse) == []


@pytest.mark.parametrize("parameters", ["{not json", "[1, 2]"])
async def test_bad_tool_arguments_send_error(harness, parameters):
    await harness.open()

    harness.channel.receive(ToolCallRequest(tool_call_id="t3", name="send_message", parameters=parameters))
    await wait_until(lambda: harness.channel.sent_of(ToolError))

    assert harness.channel.sent_of(ToolError)[0].code == "message_send_error"
    harness.bridge.invoke.assert_not_awaited()


async def test_unexpected_bridge_exception_still_resolves(harness):
    harness.bridge.invoke.side_effect = RuntimeError("bug")
    await harness.open()

    harness.channel.receive(ToolCallRequest(tool_call_id="t4", name="send_message", parameters='{"message":"x"}'))
    await wait_until(lambda: harness.channel.sent_of(ToolError))

    assert len(harness.channel.sent_of(ToolError)) == 1


async def test_duplicate_tool_call_ignored(harness):
    release = asyncio.Event()

    async def slow_invoke(name, arguments):
        await release.wait()
        return "done"

    harness.bridge.invoke.side_effect = slow_invoke
    await harness.open()

    request = ToolCallRequest(tool_call_id="t5", name="send_message", parameters='{"message":"x"}')
    harness.channel.receive(request)
    harness.channel.receive(request)
    await harness.idle()
    release.set()
    await wait_until(lambda: harness.channel.sent_of(ToolResponse))
    await asyncio.sleep(0.02)

    assert len(harness.channel.sent_of(ToolResponse)) == 1
    assert harness.bridge.invoke.await_count == 1


def test_invocation_resolves_only_once():
    invocation = ToolInvocation(tool_call_id="t6", name="send_message", parameters="{}")
    invocation.resolve_success('{"content": "ok"}')

    with pytest.raises(InvocationAlreadyResolvedError):
        invocation.resolve_error("late", code="message_send_error")
    with pytest.raises(InvocationAlreadyResolvedError):
        invocation.resolve_success("again")


async def test_tool_call_then_interruption(harness):
    """Interruption clears playback but the pending tool call still resolves."""
    release = asyncio.Event()

    async def slow_invoke(name, arguments):
        await release.wait()
        return "ok"

    harness.bridge.invoke.side_effect = slow_invoke
    await harness.open()

    harness.channel.receive(AudioChunk(data=PCM_B64, id="a1"))
    harness.channel.receive(ToolCallRequest(tool_call_id="t7", name="send_message", parameters='{"message":"x"}'))
    harness.channel.receive(UserInterruption())
    await harness.idle()

    assert not harness.playback.is_playing
    assert harness.playback.pending == 0

    release.set()
    await wait_until(lambda: harness.channel.sent_of(ToolResponse))
    assert harness.channel.sent_of(ToolResponse)[0].tool_call_id == "t7"


# ================================================================
# Playback
# ================================================================


async def test_audio_chunks_play_in_order(harness):
    await harness.open()

    for i in range(3):
        harness.channel.receive(AudioChunk(data=PCM_B64, id=f"a{i}"))
    await harness.idle()

    assert [u.source_id for u in harness.output.started] == ["a0"]
    assert harness.playback.pending == 2

    harness.output.handles[0].finish()
    await wait_until(lambda: len(harness.output.started) == 2)
    harness.output.handles[1].finish()
    await wait_until(lambda: len(harness.output.started) == 3)

    assert [u.source_id for u in harness.output.started] == ["a0", "a1", "a2"]
    assert harness.output.max_active == 1


async def test_interruption_mid_render(harness):
    await harness.open()

    harness.channel.receive(AudioChunk(data=PCM_B64, id="a0"))
    harness.channel.receive(AudioChunk(data=PCM_B64, id="a1"))
    await wait_until(lambda: harness.playback.is_playing)
    handle = harness.output.handles[0]

    harness.channel.receive(UserInterruption())
    await harness.idle()

    assert handle.stopped
    assert not harness.playback.is_playing
    assert harness.playback.pending == 0

    harness.channel.receive(AudioChunk(data=PCM_B64, id="a2"))
    await wait_until(lambda: len(harness.output.started) == 2)
    assert harness.output.started[-1].source_id == "a2"


async def test_undecodable_chunk_dropped(harness):
    await harness.open()

    harness.channel.receive(AudioChunk(data="%%%"))
    harness.channel.receive(AudioChunk(data=PCM_B64, id="good"))
    await harness.idle()

    assert [u.source_id for u in harness.output.started] == ["good"]
    assert harness.dispatcher.session.is_open


async def test_unknown_event_ignored(harness):
    await harness.open()

    harness.channel.receive(UnknownEvent(event_type="brand_new_event", payload={"type": "brand_new_event"}))
    await harness.idle()

    assert harness.dispatcher.session.state == ConnectionState.OPEN
    assert harness.errors == []


# ================================================================
# Lifecycle
# ================================================================


async def test_connect_sends_params_and_starts_capture():
    device = FakeInputDevice(slices=[b"\x01\x00\x02\x00"])
    h = Harness(input_device=device)
    await h.open()

    await wait_until(lambda: h.channel.sent_of(AudioInput))

    params = h.channel.connect_calls[0]
    assert params.config_id == "cfg-1"
    assert params.resumed_chat_group_id is None
    assert params.tools[0]["name"] == "send_message"
    assert h.dispatcher.session.capture_active
    assert h.dispatcher.session.intent == SessionIntent.ACTIVE
    await h.shutdown()
    assert not device.is_open


async def test_connect_twice_rejected(harness):
    await harness.open()

    with pytest.raises(ValueError):
        await harness.dispatcher.connect()


async def test_failed_handshake_raises():
    h = Harness(fail_connects=1)

    with pytest.raises(SessionConnectionError):
        await h.dispatcher.connect()

    assert h.dispatcher.session.state == ConnectionState.DISCONNECTED
    assert h.dispatcher.session.intent == SessionIntent.USER_REQUESTED_DISCONNECT
    await h.shutdown()


async def test_wait_until_open_after_failed_handshake():
    h = Harness(fail_connects=1)

    with pytest.raises(SessionConnectionError):
        await h.dispatcher.connect()
    with pytest.raises(SessionConnectionError):
        await h.dispatcher.wait_until_open(timeout=2.0)
    await h.shutdown()


async def test_wait_until_open_released_when_reconnect_gives_up():
    h = Harness(settings=Settings(reconnect_backoff_base=0.2, reconnect_max_attempts=2))
    await h.open()

    h.channel.fail_connects = 10
    h.channel.drop()
    await wait_until(lambda: not h.dispatcher.session.is_open)

    with pytest.raises(SessionConnectionError):
        await h.dispatcher.wait_until_open(timeout=2.0)
    assert h.dispatcher.session.state == ConnectionState.DISCONNECTED
    await h.shutdown()


async def test_unexpected_close_reconnects_with_chat_group(harness):
    await harness.open()
    harness.channel.receive(ChatMetadata(chat_group_id="group-42", chat_id="chat-1"))
    await harness.idle()

    harness.channel.drop()
    await wait_until(lambda: len(harness.channel.connect_calls) == 2)
    await harness.dispatcher.wait_until_open(timeout=2.0)
    await harness.idle()

    assert len(harness.channel.connect_calls) == 2, "expected exactly one reconnect"
    assert harness.channel.connect_calls[1].resumed_chat_group_id == "group-42"
    assert harness.dispatcher.session.reconnect_attempts == 0
    assert harness.dispatcher.session.capture_active


async def test_resume_passes_chat_group_id(harness):
    await harness.open(resumed_chat_group_id="group-7")

    assert harness.channel.connect_calls[0].resumed_chat_group_id == "group-7"
    assert harness.dispatcher.session.chat_group_id == "group-7"


async def test_user_disconnect_never_reconnects(harness):
    await harness.open()

    await harness.dispatcher.disconnect()
    await asyncio.sleep(0.05)

    assert len(harness.channel.connect_calls) == 1
    assert harness.dispatcher.session.state == ConnectionState.DISCONNECTED
    assert not harness.dispatcher.session.capture_active
    assert harness.input.close_calls == 1


async def test_disconnect_cancels_playback(harness):
    await harness.open()
    harness.channel.receive(AudioChunk(data=PCM_B64, id="a0"))
    await wait_until(lambda: harness.playback.is_playing)

    await harness.dispatcher.disconnect()

    assert harness.output.handles[0].stopped
    assert not harness.playback.is_playing


async def test_reconnect_gives_up_after_max_attempts():
    h = Harness(settings=Settings(reconnect_backoff_base=0.0, reconnect_max_attempts=2))
    await h.open()

    h.channel.fail_connects = 10
    h.channel.drop()
    await asyncio.wait_for(h.dispatcher.wait_closed(), timeout=2.0)

    assert len(h.channel.connect_calls) == 1 + 2
    assert h.dispatcher.session.state == ConnectionState.DISCONNECTED
    assert any(isinstance(e, SessionConnectionError) for e in h.errors)
    await h.shutdown()


async def test_capture_failure_reported_session_stays_open():
    h = Harness(input_device=FakeInputDevice(fail_open=True))
    await h.open()
    await h.idle()

    assert h.dispatcher.session.state == ConnectionState.OPEN
    assert not h.dispatcher.session.capture_active
    assert len(h.errors) == 1 and isinstance(h.errors[0], DeviceError)
    await h.shutdown()


async def test_microphone_lost_mid_session_reported():
    h = Harness(input_device=FakeInputDevice(slices=[b"\x01\x00"], fail_read=True))
    await h.open()
    await wait_until(lambda: h.errors)

    assert h.dispatcher.session.state == ConnectionState.OPEN
    assert not h.dispatcher.session.capture_active
    assert len(h.errors) == 1 and isinstance(h.errors[0], DeviceError)
    assert not h.input.is_open
    assert len(h.channel.sent_of(AudioInput)) == 1
    await h.shutdown()
