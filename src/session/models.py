"""
Session data model.

Plain containers shared by the engine components. Mutable fields of
``Session`` are written by the EventDispatcher only.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

from core.errors import InvocationAlreadyResolvedError

from .events import ToolError, ToolResponse


class ConnectionState(str, Enum):
    """Connection lifecycle of a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class SessionIntent(str, Enum):
    """What the caller wants the session to be doing."""

    ACTIVE = "active"
    USER_REQUESTED_DISCONNECT = "user_requested_disconnect"


@dataclass
class Session:
    """State tracking for one logical, possibly reconnected, conversation."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    intent: SessionIntent = SessionIntent.USER_REQUESTED_DISCONNECT
    chat_group_id: str | None = None
    chat_id: str | None = None
    capture_active: bool = False
    reconnect_attempts: int = 0

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN


class EmotionScore(NamedTuple):
    """A single prosody score attached to a transcript message."""

    label: str
    magnitude: float

    @property
    def formatted(self) -> str:
        """Display form rounded to two decimals (e.g. ``"0.91"``)."""
        return f"{math.floor(float(self.magnitude) * 100 + 0.5) / 100:.2f}"


@dataclass(frozen=True)
class TranscriptEntry:
    """One line of conversation delivered to the transcript sink."""

    role: str
    content: str
    emotions: tuple[EmotionScore, ...] = ()


@dataclass(frozen=True)
class OutboundAudioChunk:
    """Encoded microphone audio waiting to be sent."""

    data: str
    timestamp: float


@dataclass(frozen=True)
class PlaybackUnit:
    """Decoded speech ready to render."""

    pcm: bytes
    sample_rate: int
    channels: int = 1
    sample_width: int = 2
    source_id: str | None = None

    @property
    def frame_count(self) -> int:
        frame_size = self.channels * self.sample_width
        return len(self.pcm) // frame_size if frame_size else 0

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if not self.sample_rate:
            return 0.0
        return self.frame_count / self.sample_rate


@dataclass
class ToolInvocation:
    """
    A remote-requested call into an external capability.

    Resolved by exactly one success or error response; a second
    resolution attempt raises InvocationAlreadyResolvedError.
    """

    tool_call_id: str
    name: str
    parameters: str
    arguments: dict[str, Any] = field(default_factory=dict)
    _resolved: bool = field(default=False, repr=False)

    @property
    def resolved(self) -> bool:
        return self._resolved

    def _mark_resolved(self) -> None:
        if self._resolved:
            raise InvocationAlreadyResolvedError(self.tool_call_id)
        self._resolved = True

    def resolve_success(self, content: str) -> ToolResponse:
        self._mark_resolved()
        return ToolResponse(tool_call_id=self.tool_call_id, content=content)

    def resolve_error(
        self,
        error: str,
        code: str,
        level: str = "warn",
        content: str | None = None,
    ) -> ToolError:
        self._mark_resolved()
        return ToolError(
            tool_call_id=self.tool_call_id,
            error=error,
            code=code,
            level=level,
            content=content,
        )
