"""
Agents Package

Bridges tool calls from the remote voice interface to the agent service.

- ToolInvocationBridge: runs named capabilities over HTTP
- default_tool_declarations: the tools advertised on connect
"""

from .tool_bridge import ToolInvocationBridge
from .tool_definitions import SEND_MESSAGE_TOOL, build_tool_declaration, default_tool_declarations

__all__ = [
    "SEND_MESSAGE_TOOL",
    "ToolInvocationBridge",
    "build_tool_declaration",
    "default_tool_declarations",
]
