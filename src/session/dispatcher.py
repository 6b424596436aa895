"""
Event dispatcher.

The protocol state machine of a voice session. Inbound events from the
channel land in a single inbox and are handled one at a time, in arrival
order, by one dispatch task. The dispatcher is the only writer of the
Session's connection state, intent and chat group id, and it alone
decides when to start or stop capture, cancel playback and reconnect.

State machine::

    DISCONNECTED --connect--> CONNECTING --ConnectionOpened--> OPEN
    OPEN --disconnect--> CLOSING --ConnectionClosed--> DISCONNECTED
    OPEN --ConnectionClosed (intent ACTIVE)--> DISCONNECTED --reconnect--> CONNECTING
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import orjson

from agents.tool_bridge import ToolInvocationBridge
from core.errors import (
    ConfigurationError,
    DecodeError,
    DeviceError,
    InvocationError,
    SessionConnectionError,
    VoiceSessionError,
)
from core.logger import get_logger
from core.settings import Settings

from .capture import CaptureStream
from .channel import ConnectionParams, SessionChannel
from .codec import AudioChunkCodec
from .emotions import extract_top_emotions
from .events import (
    AssistantEnd,
    AudioChunk,
    ChatMetadata,
    ConnectionClosed,
    ConnectionOpened,
    InboundEvent,
    RemoteError,
    ToolCallRequest,
    TranscriptMessage,
    UserInterruption,
)
from .models import ConnectionState, Session, SessionIntent, ToolInvocation, TranscriptEntry
from .playback import PlaybackQueue

logger = get_logger(__name__)

TranscriptSink = Callable[[TranscriptEntry], Any]
ErrorCallback = Callable[[Exception], Any]

TOOL_ERROR_CODE = "message_send_error"
TOOL_ERROR_LEVEL = "warn"
TOOL_ERROR_CONTENT = "There was an error sending the message."


class EventDispatcher:
    """Serial inbound event handling and session lifecycle decisions."""

    def __init__(
        self,
        channel: SessionChannel,
        codec: AudioChunkCodec,
        playback: PlaybackQueue,
        capture: CaptureStream,
        bridge: ToolInvocationBridge,
        params: ConnectionParams,
        settings: Settings,
        transcript_sink: TranscriptSink | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self._channel = channel
        self._codec = codec
        self._playback = playback
        self._capture = capture
        self._bridge = bridge
        self._params = params
        self._settings = settings
        self._transcript_sink = transcript_sink
        self._on_error = on_error

        self.session = Session()
        self._inbox: asyncio.Queue[InboundEvent] = asyncio.Queue()
        self._dispatch_task: asyncio.Task | None = None
        self._closed = asyncio.Event()
        self._closed.set()
        self._opened = asyncio.Event()

        self._invocations: dict[str, ToolInvocation] = {}
        self._invocation_tasks: set[asyncio.Task] = set()

        self._handlers: dict[type[InboundEvent], Callable[[Any], Awaitable[None]]] = {
            ConnectionOpened: self._handle_connection_opened,
            ConnectionClosed: self._handle_connection_closed,
            ChatMetadata: self._handle_chat_metadata,
            TranscriptMessage: self._handle_transcript,
            AudioChunk: self._handle_audio_chunk,
            ToolCallRequest: self._handle_tool_call,
            UserInterruption: self._handle_user_interruption,
            AssistantEnd: self._handle_assistant_end,
            RemoteError: self._handle_remote_error,
        }

        channel.subscribe(self.post)
        capture.set_error_handler(self._handle_capture_failed)

    # ================================================================
    # Inbox
    # ================================================================

    def post(self, event: InboundEvent) -> None:
        """Queue an inbound event for serial handling."""
        self._inbox.put_nowait(event)

    def start(self) -> None:
        """Start the dispatch task (no-op if already running)."""
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="event-dispatcher")

    async def stop(self) -> None:
        """Stop the dispatch task and abandon pending tool invocations."""
        await self._cancel_invocations()
        task, self._dispatch_task = self._dispatch_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self.handle(event)
            except Exception as e:
                logger.error(f"Error handling '{event.type}' event: {e}", exc_info=True)

    async def handle(self, event: InboundEvent) -> None:
        """Handle a single inbound event. Unknown event types are ignored."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"Ignoring unhandled event '{getattr(event, 'event_type', event.type)}'")
            return
        await handler(event)

    # ================================================================
    # Lifecycle
    # ================================================================

    @property
    def pending_invocations(self) -> int:
        return len(self._invocations)

    async def connect(self, resumed_chat_group_id: str | None = None) -> Session:
        """
        Open the session, optionally resuming an earlier conversation.

        Raises:
            ValueError: If the session is not disconnected
            SessionConnectionError: If the initial handshake fails
        """
        if self.session.state != ConnectionState.DISCONNECTED:
            raise ValueError("Already connected, use .disconnect() first")

        self.start()
        self.session.intent = SessionIntent.ACTIVE
        self.session.reconnect_attempts = 0
        if resumed_chat_group_id:
            self.session.chat_group_id = resumed_chat_group_id
        self._closed.clear()

        try:
            await self._open()
        except SessionConnectionError:
            self.session.intent = SessionIntent.USER_REQUESTED_DISCONNECT
            self._closed.set()
            raise

        await self._close_if_abandoned()
        return self.session

    async def _open(self) -> None:
        params = self._params.resuming(self.session.chat_group_id)
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self._channel.connect(params)
        except SessionConnectionError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise

    def _set_state(self, state: ConnectionState) -> None:
        self.session.state = state
        if state == ConnectionState.OPEN:
            self._opened.set()
        else:
            self._opened.clear()

    async def wait_until_open(self, timeout: float | None = None) -> Session:
        """
        Wait for ConnectionOpened to be handled.

        Raises:
            SessionConnectionError: If the session closes before opening
            asyncio.TimeoutError: If it is not open within ``timeout``
        """
        if self.session.is_open:
            return self.session
        if self._closed.is_set():
            raise SessionConnectionError("Session closed before it opened")

        opened = asyncio.create_task(self._opened.wait())
        closed = asyncio.create_task(self._closed.wait())
        try:
            done, _ = await asyncio.wait({opened, closed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
            closed.cancel()

        if not done:
            raise asyncio.TimeoutError("Session did not open in time")
        if not self.session.is_open:
            raise SessionConnectionError("Session closed before it opened")
        return self.session

    async def wait_closed(self) -> None:
        """Wait until the session is fully disconnected."""
        await self._closed.wait()

    async def disconnect(self) -> None:
        """
        Caller-initiated close. Never triggers a reconnect.

        Intent is recorded before anything else so a close notification
        already in flight is interpreted as requested.
        """
        self.session.intent = SessionIntent.USER_REQUESTED_DISCONNECT
        if self.session.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            self._set_state(ConnectionState.CLOSING)

        await self._stop_capture()
        self._playback.cancel_all()
        await self._cancel_invocations()

        was_connected = self._channel.is_connected
        await self._channel.close()
        if not was_connected:
            self._mark_disconnected()
        else:
            await self._closed.wait()

        # ConnectionOpened may have been handled while we were closing
        await self._stop_capture()
        logger.info("Session disconnected")

    async def _close_if_abandoned(self) -> None:
        # disconnect() ran while the handshake was in flight
        if self.session.intent != SessionIntent.ACTIVE:
            await self._channel.close()

    def _mark_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._closed.set()

    async def _stop_capture(self) -> None:
        await self._capture.stop()
        self.session.capture_active = False

    async def _reconnect(self) -> None:
        """Reopen with the stored chat group id, backing off between failures."""
        max_attempts = self._settings.reconnect_max_attempts

        while self.session.intent == SessionIntent.ACTIVE:
            self.session.reconnect_attempts += 1
            attempt = self.session.reconnect_attempts

            if max_attempts and attempt > max_attempts:
                error = SessionConnectionError(f"Reconnect failed after {max_attempts} attempt(s)")
                logger.error(str(error))
                self.session.intent = SessionIntent.USER_REQUESTED_DISCONNECT
                self._report_error(error)
                break

            delay = self._settings.reconnect_delay(attempt)
            if delay:
                await asyncio.sleep(delay)
                if self.session.intent != SessionIntent.ACTIVE:
                    break

            logger.info(f"Reconnecting (attempt {attempt}, chat group {self.session.chat_group_id or 'new'})")
            try:
                await self._open()
                await self._close_if_abandoned()
                return
            except SessionConnectionError as e:
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")

        self._mark_disconnected()

    # ================================================================
    # Event handlers
    # ================================================================

    async def _handle_connection_opened(self, event: ConnectionOpened) -> None:
        if self.session.intent != SessionIntent.ACTIVE:
            # Opened after disconnect() was requested; the close is already underway
            return

        self._set_state(ConnectionState.OPEN)
        self.session.reconnect_attempts = 0
        logger.info("Session open")

        try:
            await self._capture.start()
            self.session.capture_active = True
        except (DeviceError, ConfigurationError) as e:
            logger.error(f"Could not start audio capture: {e}")
            self._report_error(e)

    def _handle_capture_failed(self, error: Exception) -> None:
        # Capture ended on its own; the session itself stays open
        self.session.capture_active = False
        self._report_error(error)

    async def _handle_connection_closed(self, event: ConnectionClosed) -> None:
        await self._stop_capture()

        if self.session.intent != SessionIntent.ACTIVE:
            self._mark_disconnected()
            return

        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(f"Connection closed unexpectedly ({event.reason}); reconnecting")
        await self._reconnect()

    async def _handle_chat_metadata(self, event: ChatMetadata) -> None:
        if event.chat_group_id != self.session.chat_group_id:
            logger.info(f"Chat group id: {event.chat_group_id}")
        self.session.chat_group_id = event.chat_group_id
        self.session.chat_id = event.chat_id

    async def _handle_transcript(self, event: TranscriptMessage) -> None:
        if event.interim:
            return

        emotions = extract_top_emotions(event.emotion_scores, self._settings.emotion_top_n)
        entry = TranscriptEntry(role=event.role, content=event.text or "", emotions=tuple(emotions))

        if self._transcript_sink is None:
            return
        result = self._transcript_sink(entry)
        if asyncio.iscoroutine(result):
            await result

    async def _handle_audio_chunk(self, event: AudioChunk) -> None:
        try:
            unit = self._codec.decode(event.data, source_id=event.id)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable audio chunk: {e}")
            return
        self._playback.enqueue(unit)

    async def _handle_user_interruption(self, event: UserInterruption) -> None:
        self._playback.cancel_all()

    async def _handle_assistant_end(self, event: AssistantEnd) -> None:
        logger.debug("Assistant turn ended")

    async def _handle_remote_error(self, event: RemoteError) -> None:
        logger.error(f"Remote error {event.code}: {event.message}")
        self._report_error(VoiceSessionError(f"Remote error {event.code}: {event.message}"))

    async def _handle_tool_call(self, event: ToolCallRequest) -> None:
        if event.tool_call_id in self._invocations:
            logger.warning(f"Ignoring duplicate tool call {event.tool_call_id}")
            return

        invocation = ToolInvocation(tool_call_id=event.tool_call_id, name=event.name, parameters=event.parameters)
        self._invocations[invocation.tool_call_id] = invocation
        logger.info(f"Tool call {invocation.tool_call_id}: {invocation.name}")

        task = asyncio.create_task(self._run_invocation(invocation), name=f"tool-{invocation.tool_call_id}")
        self._invocation_tasks.add(task)
        task.add_done_callback(self._invocation_tasks.discard)

    # ================================================================
    # Tool invocations
    # ================================================================

    async def _run_invocation(self, invocation: ToolInvocation) -> None:
        """Run one tool call and send exactly one resolution for it."""
        try:
            invocation.arguments = self._parse_arguments(invocation.parameters)
            result = await self._bridge.invoke(invocation.name, invocation.arguments)
        except (DecodeError, InvocationError) as e:
            logger.warning(f"Tool call {invocation.tool_call_id} failed: {e}")
            resolution = self._error_resolution(invocation, e)
        except Exception as e:
            logger.error(f"Unexpected error in tool call {invocation.tool_call_id}: {e}", exc_info=True)
            resolution = self._error_resolution(invocation, e)
        else:
            resolution = invocation.resolve_success(orjson.dumps({"content": result}).decode("utf-8"))
        finally:
            self._invocations.pop(invocation.tool_call_id, None)

        try:
            await self._channel.send(resolution)
        except SessionConnectionError as e:
            logger.warning(f"Could not deliver result of tool call {invocation.tool_call_id}: {e}")

    @staticmethod
    def _parse_arguments(parameters: str) -> dict[str, Any]:
        try:
            arguments = orjson.loads(parameters or "{}")
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Tool arguments are not valid JSON: {e}") from e
        if not isinstance(arguments, dict):
            raise DecodeError("Tool arguments must be a JSON object")
        return arguments

    @staticmethod
    def _error_resolution(invocation: ToolInvocation, error: Exception):
        return invocation.resolve_error(
            error=str(error) or type(error).__name__,
            code=TOOL_ERROR_CODE,
            level=TOOL_ERROR_LEVEL,
            content=TOOL_ERROR_CONTENT,
        )

    async def _cancel_invocations(self) -> None:
        tasks = list(self._invocation_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._invocations.clear()

    def _report_error(self, error: Exception) -> None:
        if self._on_error is None:
            return
        result = self._on_error(error)
        if asyncio.iscoroutine(result):
            asyncio.create_task(result)
