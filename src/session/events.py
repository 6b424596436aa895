"""
Typed events crossing the remote channel boundary.

Inbound events are produced by a SessionChannel (either parsed from wire
frames or synthesized for connection lifecycle) and consumed by the
EventDispatcher. Outbound events are built by the engine and serialized
by the channel.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

from core.errors import DecodeError

# ================================================================
# Inbound
# ================================================================


@dataclass(frozen=True)
class InboundEvent:
    """Base class for everything the remote side (or the transport) reports."""

    type: ClassVar[str] = "unknown"


@dataclass(frozen=True)
class ConnectionOpened(InboundEvent):
    type: ClassVar[str] = "connection_opened"


@dataclass(frozen=True)
class ConnectionClosed(InboundEvent):
    type: ClassVar[str] = "connection_closed"

    reason: str = ""
    error: bool = False


@dataclass(frozen=True)
class ChatMetadata(InboundEvent):
    """Carries the resumable chat group id for this connection."""

    type: ClassVar[str] = "chat_metadata"

    chat_group_id: str
    chat_id: str | None = None


@dataclass(frozen=True)
class TranscriptMessage(InboundEvent):
    type: ClassVar[str] = "transcript_message"

    role: str
    text: str
    emotion_scores: dict[str, float] = field(default_factory=dict)
    interim: bool = False


@dataclass(frozen=True)
class AudioChunk(InboundEvent):
    type: ClassVar[str] = "audio_output"

    data: str
    id: str | None = None


@dataclass(frozen=True)
class ToolCallRequest(InboundEvent):
    type: ClassVar[str] = "tool_call"

    tool_call_id: str
    name: str
    parameters: str = "{}"


@dataclass(frozen=True)
class UserInterruption(InboundEvent):
    type: ClassVar[str] = "user_interruption"


@dataclass(frozen=True)
class AssistantEnd(InboundEvent):
    type: ClassVar[str] = "assistant_end"


@dataclass(frozen=True)
class RemoteError(InboundEvent):
    type: ClassVar[str] = "error"

    code: str = ""
    message: str = ""


@dataclass(frozen=True)
class UnknownEvent(InboundEvent):
    """A frame with a type this engine does not understand."""

    type: ClassVar[str] = "unknown"

    event_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


def _require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise DecodeError(f'"{payload.get("type")}" frame is missing "{key}"')
    return value


def _parse_transcript(payload: dict[str, Any]) -> TranscriptMessage:
    message = payload.get("message") or {}
    if not isinstance(message, dict):
        raise DecodeError(f'"{payload.get("type")}" frame has a malformed "message"')

    default_role = "user" if payload.get("type") == "user_message" else "assistant"
    prosody = (payload.get("models") or {}).get("prosody") or {}
    scores = prosody.get("scores") or {}

    return TranscriptMessage(
        role=message.get("role") or default_role,
        text=message.get("content") or "",
        emotion_scores={str(label): float(value) for label, value in scores.items()},
        interim=bool(payload.get("interim", False)),
    )


def parse_inbound_event(payload: dict[str, Any]) -> InboundEvent:
    """
    Convert a decoded wire frame into a typed inbound event.

    Args:
        payload: JSON object received from the remote side

    Returns:
        The matching InboundEvent; unrecognized types yield UnknownEvent

    Raises:
        DecodeError: If a recognized frame is missing required fields
    """
    if not isinstance(payload, dict):
        raise DecodeError("Inbound frame must be a JSON object")

    event_type = payload.get("type", "")

    if event_type == "chat_metadata":
        return ChatMetadata(chat_group_id=_require(payload, "chat_group_id"), chat_id=payload.get("chat_id"))

    if event_type in ("user_message", "assistant_message"):
        try:
            return _parse_transcript(payload)
        except DecodeError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Malformed {event_type}: {e}") from e

    if event_type == "audio_output":
        return AudioChunk(data=_require(payload, "data"), id=payload.get("id"))

    if event_type == "tool_call":
        parameters = payload.get("parameters")
        if parameters is None:
            parameters = "{}"
        return ToolCallRequest(
            tool_call_id=_require(payload, "tool_call_id"),
            name=_require(payload, "name"),
            parameters=parameters,
        )

    if event_type == "user_interruption":
        return UserInterruption()

    if event_type == "assistant_end":
        return AssistantEnd()

    if event_type == "error":
        return RemoteError(code=str(payload.get("code", "")), message=str(payload.get("message", "")))

    return UnknownEvent(event_type=str(event_type), payload=payload)


# ================================================================
# Outbound
# ================================================================


@dataclass(frozen=True)
class OutboundEvent:
    type: ClassVar[str] = ""

    def to_payload(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class AudioInput(OutboundEvent):
    type: ClassVar[str] = "audio_input"

    data: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(frozen=True)
class ToolResponse(OutboundEvent):
    type: ClassVar[str] = "tool_response"

    tool_call_id: str
    content: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "tool_call_id": self.tool_call_id, "content": self.content}


@dataclass(frozen=True)
class ToolError(OutboundEvent):
    type: ClassVar[str] = "tool_error"

    tool_call_id: str
    error: str
    code: str
    level: str = "warn"
    content: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "type": self.type,
            "tool_call_id": self.tool_call_id,
            "error": self.error,
            "code": self.code,
            "level": self.level,
        }
        if self.content is not None:
            payload["content"] = self.content
        return payload


@dataclass(frozen=True)
class SessionSettings(OutboundEvent):
    """Audio format and tool declarations sent right after the handshake."""

    type: ClassVar[str] = "session_settings"

    encoding: str = "linear16"
    sample_rate: int = 16000
    channels: int = 1
    tools: tuple[dict[str, Any], ...] = ()

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "audio": {
                "encoding": self.encoding,
                "sample_rate": self.sample_rate,
                "channels": self.channels,
            },
            "tools": list(self.tools),
        }
