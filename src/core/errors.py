"""
Error taxonomy for the voice session engine.

Transport and device failures may change session state; decode and
invocation failures are confined to the single event that caused them.
"""


class VoiceSessionError(Exception):
    """Base class for all engine errors."""


class SessionConnectionError(VoiceSessionError, ConnectionError):
    """Handshake or transport failure on the remote voice channel."""


class InvocationError(VoiceSessionError):
    """A tool capability call failed (HTTP status, transport or payload)."""


class DecodeError(VoiceSessionError, ValueError):
    """Malformed inbound audio, frame or tool arguments."""


class DeviceError(VoiceSessionError):
    """Capture or render device unavailable."""


class ConfigurationError(VoiceSessionError):
    """Static configuration the remote side or the host cannot satisfy."""


class InvocationAlreadyResolvedError(RuntimeError):
    """A tool invocation was resolved a second time."""

    def __init__(self, tool_call_id: str):
        super().__init__(f'Tool invocation "{tool_call_id}" has already been resolved')
        self.tool_call_id = tool_call_id
