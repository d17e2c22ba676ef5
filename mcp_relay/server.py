"""
Stdio tool server base class.

A tool server is a standalone process that:
1. Reads JSON-RPC messages from stdin
2. Dispatches requests to registered ToolHandlers
3. Writes JSON-RPC responses to stdout

The relay launches these as subprocess providers. To create one:

    from mcp_relay.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my-tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }
        required = ["input"]

        def handle(self, params: dict) -> str:
            return f"processed: {params['input']}"

    if __name__ == "__main__":
        server = StdioToolServer("my-server")
        server.register(MyTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

from mcp_relay import __version__

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"


class ToolError(Exception):
    """Raised by a handler to report a tool-level failure to the caller."""


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Args:
            params: Dict of parameter name → value

        Returns:
            The tool result. Strings are sent as text; anything else is
            JSON-encoded first.

        Raises:
            ToolError: to report a failure the model should see.
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool schema for discovery."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }


def _text_result(text: str, is_error: bool = False) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class StdioToolServer:
    """
    JSON-RPC tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize"     → server identity and capabilities
        - "ping"           → health check
        - "tools/list"     → registered tool schemas
        - "tools/call"     → calls a tool by name with arguments
        - "resources/list", "prompts/list" → always empty
    - Notifications (no id) are accepted and never answered
    """

    def __init__(self, name: str = "mcp-relay-tools", version: str = __version__):
        self.name = name
        self.version = version
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """
        Main loop: read messages from stdin, dispatch, write replies to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        logger.info(f"Tool server starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")

        for line in stdin:
            line = line.strip()
            if not line:
                continue
            reply = self.handle_line(line)
            if reply is not None:
                stdout.write(json.dumps(reply) + "\n")
                stdout.flush()

    def handle_line(self, line: str) -> dict | None:
        """Process one message; returns the reply, or None for notifications."""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            return _error(None, -32700, f"Parse error: {e}")

        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return _error(request_id, -32600, "Invalid JSON-RPC request")

        method = message["method"]
        if "id" not in message:
            logger.debug(f"Notification: {method}")
            return None

        request_id = message["id"]
        try:
            result = self._dispatch(method, message.get("params") or {})
        except MethodNotFound as e:
            return _error(request_id, -32601, str(e))
        except Exception as e:
            logger.exception(f"Error handling {method}")
            return _error(request_id, -32603, str(e))
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": {"name": self.name, "version": self.version},
                "capabilities": {"tools": {}},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            tool_name = params.get("name", "")
            tool_params = params.get("arguments") or {}

            handler = self._handlers.get(tool_name)
            if not handler:
                raise MethodNotFound(
                    f"Unknown tool: '{tool_name}'. "
                    f"Available: {list(self._handlers.keys())}"
                )

            try:
                result = handler.handle(tool_params)
            except ToolError as e:
                return _text_result(str(e), is_error=True)
            text = result if isinstance(result, str) else json.dumps(result, indent=2)
            return _text_result(text)

        if method in ("resources/list", "prompts/list"):
            return {method.split("/")[0]: []}

        raise MethodNotFound(f"Unknown method: '{method}'")


class MethodNotFound(Exception):
    pass


def _error(request_id: Any, code: int, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
