"""
Tool Invocation Bridge

Executes capabilities requested by the remote voice interface. The only
recognized capability, ``send_message``, forwards a message to the agent
service over HTTP and returns its textual answer.

The bridge never talks to the session channel: failures are raised as
InvocationError and turned into protocol-level tool errors by the caller.
"""

from typing import Any

import httpx

from core.errors import InvocationError
from core.logger import get_logger

from .tool_definitions import SEND_MESSAGE_TOOL

logger = get_logger(__name__)


class ToolInvocationBridge:
    """HTTP bridge from tool calls to the agent service."""

    def __init__(
        self,
        base_url: str,
        agent_name: str = "general_agent",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Agent service root (e.g. "http://localhost:8000")
            agent_name: Agent addressed by /agent/{agent_name}/run
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used for testing)
        """
        self.base_url = base_url.rstrip("/")
        self.agent_name = agent_name
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def capabilities(self) -> tuple[str, ...]:
        return (SEND_MESSAGE_TOOL,)

    async def invoke(self, name: str, arguments: dict[str, Any]) -> str:
        """
        Run capability ``name`` with already-parsed ``arguments``.

        Returns:
            The capability's textual result

        Raises:
            InvocationError: Unknown capability, bad arguments, non-2xx
                status, transport failure or malformed response body
        """
        if name != SEND_MESSAGE_TOOL:
            raise InvocationError(f'Unknown tool "{name}"')

        message = arguments.get("message")
        if not isinstance(message, str):
            raise InvocationError('send_message requires a string "message" argument')

        return await self.send_message(message)

    async def send_message(self, message: str) -> str:
        """POST ``message`` to the agent service and return its ``content``."""
        path = f"/agent/{self.agent_name}/run"
        params = {"message": message, "stream": "false", "monitor": "false"}

        logger.info(f"Forwarding message to agent '{self.agent_name}' ({len(message)} chars)")

        try:
            response = await self._client.post(path, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Agent request failed: {e}")
            raise InvocationError(str(e) or type(e).__name__) from e

        if not response.is_success:
            raise InvocationError(f"HTTP error! status: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise InvocationError(f"Agent returned a non-JSON body: {e}") from e

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise InvocationError('Agent response has no string "content" field')

        return content

    async def aclose(self) -> None:
        await self._client.aclose()
