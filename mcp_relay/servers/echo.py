"""
Echo tool server: minimal reference implementation.

Use this as a template for building new tool servers.
It implements a single tool that echoes back its input,
useful for testing the transport layer.

Launch:
    python3 -m mcp_relay.servers.echo

Test:
    echo '{"jsonrpc":"2.0","method":"ping","params":{},"id":1}' | python3 -m mcp_relay.servers.echo
"""

import logging

from mcp_relay.server import StdioToolServer, ToolError, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message. Useful for testing."
    parameters = {
        "message": {
            "type": "string",
            "description": "The message to echo back",
        },
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        message = params.get("message")
        if not isinstance(message, str):
            raise ToolError("'message' must be a string")
        return {"echoed": message, "length": len(message)}


def build_server() -> StdioToolServer:
    server = StdioToolServer("echo")
    server.register(EchoTool())
    return server


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    build_server().run()
