"""
Session channel.

Abstraction over the duplex connection to the remote voice interface,
plus the WebSocket implementation. A channel only reports what happens
on the wire; whether a close should lead to a reconnect is decided by the
EventDispatcher.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlencode

import orjson
import websockets
from websockets.protocol import State

from core.errors import DecodeError, SessionConnectionError
from core.logger import get_logger

from .event_handler import WILDCARD, EventHandler
from .events import (
    AudioInput,
    ConnectionClosed,
    ConnectionOpened,
    InboundEvent,
    OutboundEvent,
    SessionSettings,
    parse_inbound_event,
)

logger = get_logger(__name__)

InboundHandler = Callable[[InboundEvent], Any]


@dataclass(frozen=True)
class ConnectionParams:
    """Everything the remote side needs to open (or resume) a conversation."""

    config_id: str | None = None
    resumed_chat_group_id: str | None = None
    tools: tuple[dict[str, Any], ...] = ()
    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1

    def resuming(self, chat_group_id: str | None) -> "ConnectionParams":
        """Copy of these params asking the remote side to resume ``chat_group_id``."""
        return replace(self, resumed_chat_group_id=chat_group_id)

    def session_settings(self) -> SessionSettings:
        return SessionSettings(
            encoding=self.encoding,
            sample_rate=self.sample_rate,
            channels=self.channels,
            tools=self.tools,
        )


class SessionChannel(EventHandler, ABC):
    """
    Duplex event channel to the remote voice interface.

    Inbound events are delivered to subscribers in the order received.
    Every successful connect() is followed by exactly one ConnectionOpened
    and, eventually, exactly one ConnectionClosed.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self, params: ConnectionParams) -> None:
        """
        Open the connection.

        Raises:
            SessionConnectionError: If the handshake fails
        """
        pass

    @abstractmethod
    async def send(self, event: OutboundEvent) -> None:
        """
        Send one outbound event.

        Raises:
            SessionConnectionError: If the channel is not connected
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Idempotent."""
        pass

    def subscribe(self, handler: InboundHandler) -> InboundHandler:
        return self.on(WILDCARD, handler)

    def unsubscribe(self, handler: InboundHandler) -> bool:
        return self.off(WILDCARD, handler)

    def publish(self, event: InboundEvent) -> None:
        self.dispatch(event.type, event)


class WebSocketSessionChannel(SessionChannel):
    """SessionChannel over a JSON-framed WebSocket."""

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        connect_timeout: float = 10.0,
        debug: bool = False,
    ):
        super().__init__()
        self.url = url
        self.api_key = api_key
        self.connect_timeout = connect_timeout
        self.debug = debug
        self.ws: websockets.ClientConnection | None = None
        self._receive_task: asyncio.Task | None = None
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self.ws is not None and self.ws.state == State.OPEN

    def _build_url(self, params: ConnectionParams) -> str:
        query: dict[str, str] = {}
        if params.config_id:
            query["config_id"] = params.config_id
        if params.resumed_chat_group_id:
            query["resumed_chat_group_id"] = params.resumed_chat_group_id
        if self.api_key:
            query["api_key"] = self.api_key
        return f"{self.url}?{urlencode(query)}" if query else self.url

    async def connect(self, params: ConnectionParams) -> None:
        if self.is_connected:
            raise ValueError("Already connected, use .close() first")

        if not self.api_key:
            logger.warning(f'No api key provided for connection to "{self.url}"')

        resumed = params.resumed_chat_group_id
        logger.info(f'Connecting to "{self.url}"' + (f" (resuming chat group {resumed})" if resumed else ""))

        self._closing = False
        try:
            ws = await websockets.connect(
                self._build_url(params),
                open_timeout=self.connect_timeout,
                ping_interval=30,
                ping_timeout=10,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise SessionConnectionError(f'Could not connect to "{self.url}": {e}') from e

        self.ws = ws
        try:
            await self._send_payload(ws, params.session_settings().to_payload())
        except websockets.exceptions.ConnectionClosed as e:
            self.ws = None
            await ws.close()
            raise SessionConnectionError(f'Connection to "{self.url}" closed during setup: {e}') from e

        logger.info(f'Connected to "{self.url}"')
        self.publish(ConnectionOpened())
        self._receive_task = asyncio.create_task(self._receive_loop(ws), name="session-channel-receive")

    async def _receive_loop(self, ws: websockets.ClientConnection) -> None:
        """Read frames until the socket closes, then report exactly one ConnectionClosed."""
        reason = ""
        error = False
        try:
            async for message in ws:
                try:
                    event = parse_inbound_event(orjson.loads(message))
                except (orjson.JSONDecodeError, DecodeError) as e:
                    logger.warning(f"Dropping malformed frame: {e}")
                    continue

                if self.debug and event.type != "audio_output":
                    logger.debug(f"received: {event}")
                self.publish(event)
        except websockets.exceptions.ConnectionClosedError as e:
            reason = str(e)
            error = True
        except Exception as e:
            logger.error(f"Error in receive loop: {e}")
            reason = str(e)
            error = True
        finally:
            if self.ws is ws:
                self.ws = None

        if not reason:
            if self._closing:
                reason = "closed by client"
            elif ws.close_code is not None:
                reason = f"code {ws.close_code}: {ws.close_reason or 'no reason'}"
            else:
                reason = "connection lost"

        logger.info(f'Disconnected from "{self.url}" ({reason})')
        self.publish(ConnectionClosed(reason=reason, error=error))

    async def send(self, event: OutboundEvent) -> None:
        ws = self.ws
        if ws is None or not self.is_connected:
            raise SessionConnectionError("Session channel is not connected")

        if self.debug and not isinstance(event, AudioInput):
            logger.debug(f"sent: {event}")

        try:
            await self._send_payload(ws, event.to_payload())
        except websockets.exceptions.ConnectionClosed as e:
            raise SessionConnectionError(f"Send failed, connection closed: {e}") from e

    @staticmethod
    async def _send_payload(ws: websockets.ClientConnection, payload: dict[str, Any]) -> None:
        await ws.send(orjson.dumps(payload).decode("utf-8"))

    async def close(self) -> None:
        ws = self.ws
        if ws is None:
            return

        self._closing = True
        await ws.close()

        task = self._receive_task
        if task and task is not asyncio.current_task():
            await task
        self._receive_task = None
