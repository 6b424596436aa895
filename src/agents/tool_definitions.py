"""
Tool declarations advertised to the remote voice interface.
"""

import json
from typing import Any

SEND_MESSAGE_TOOL = "send_message"

SEND_MESSAGE_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "message": {
            "type": "string",
            "description": "The message to send",
        },
    },
    "required": ["message"],
}


def build_tool_declaration(name: str, parameters: dict[str, Any], description: str) -> dict[str, Any]:
    """
    Build a function tool declaration.

    The remote side expects the JSON schema as a string, not an object.
    """
    if not name:
        raise ValueError("Tool declaration must have a 'name'")

    return {
        "type": "function",
        "name": name,
        "parameters": json.dumps(parameters),
        "description": description,
    }


def default_tool_declarations() -> tuple[dict[str, Any], ...]:
    """The tools this engine knows how to answer."""
    return (
        build_tool_declaration(
            SEND_MESSAGE_TOOL,
            SEND_MESSAGE_PARAMETERS,
            "Sends a message to the specified endpoint.",
        ),
    )
