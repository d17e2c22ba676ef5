"""
Provider sessions: one open transport plus the tools it advertised.

Usage:
    session = ProviderSession.connect(config)

    session.list_capabilities()        # cached from the handshake
    result = session.invoke("get-alerts", {"state": "NY"})
    print(result.content)

    session.close()
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from mcp_relay import __version__
from mcp_relay.config import ProviderConfig
from mcp_relay.errors import ConnectError, InvokeError
from mcp_relay.transport import JsonRpcNotification, JsonRpcRequest, Transport, create_transport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "mcp-relay", "version": __version__}


@dataclass(frozen=True)
class CapabilityDescriptor:
    """One tool advertised by a provider."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_schema(cls, schema: dict[str, Any]) -> "CapabilityDescriptor":
        name = schema.get("name")
        if not name:
            raise ValueError(f"Tool schema has no name: {schema}")
        input_schema = schema.get("inputSchema") or schema.get("parameters")
        kwargs: dict[str, Any] = {}
        if input_schema:
            kwargs["input_schema"] = input_schema
        return cls(name=name, description=schema.get("description") or "", **kwargs)


@dataclass(frozen=True)
class CallResult:
    """Outcome of one tool call, rendered as text."""
    content: str
    is_error: bool = False
    raw: Any = None

    @classmethod
    def from_result(cls, result: Any) -> "CallResult":
        if not isinstance(result, dict):
            return cls(content=_render(result), raw=result)

        items = result.get("content")
        if isinstance(items, list):
            parts = []
            for item in items:
                if isinstance(item, dict) and item.get("type") == "text":
                    parts.append(str(item.get("text", "")))
                else:
                    parts.append(_render(item))
            content = "\n".join(parts)
        elif items is not None:
            content = _render(items)
        else:
            content = _render(result)

        return cls(content=content, is_error=bool(result.get("isError")), raw=result)


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)


class ProviderSession:
    """
    A connected provider.

    The session exclusively owns its transport: nothing else reads from
    or writes to it, and close() is the only way it gets shut down.
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        capabilities: list[CapabilityDescriptor],
        server_info: dict[str, Any] | None = None,
    ):
        self.name = name
        self._transport = transport
        self._capabilities = list(capabilities)
        self.server_info = server_info or {}
        self._closed = False

    @classmethod
    def connect(
        cls, config: ProviderConfig, transport: Transport | None = None
    ) -> "ProviderSession":
        """
        Open a transport to the provider and run the handshake.

        Args:
            config: The provider to reach
            transport: Pre-built transport (defaults to one chosen by config)

        Returns:
            A session with its capability list already fetched.

        Raises:
            ConnectError: if the transport or handshake fails. The
                transport is closed before the error propagates.
        """
        try:
            transport = transport or create_transport(config)
        except Exception as e:
            raise ConnectError(config.name, e) from e
        try:
            transport.start()
            server_info = _initialize(transport)
            capabilities = _list_tools(transport)
        except Exception as e:
            try:
                transport.stop()
            except Exception as stop_error:
                logger.warning(f"Error closing {config.name} after failed connect: {stop_error}")
            raise ConnectError(config.name, e) from e

        session = cls(config.name, transport, capabilities, server_info)
        logger.info(
            f"Connected to server '{config.name}' with tools: "
            f"{[c.name for c in capabilities]}"
        )
        return session

    def list_capabilities(self, refresh: bool = False) -> list[CapabilityDescriptor]:
        """Return the provider's tools, re-fetching them if refresh is set."""
        if refresh:
            self._capabilities = _list_tools(self._transport)
        return list(self._capabilities)

    def invoke(self, local_name: str, arguments: dict[str, Any]) -> CallResult:
        """
        Call a tool on this provider.

        Args:
            local_name: The tool name as the provider knows it
            arguments: Tool parameters

        Returns:
            The tool result. Tool-level failures reported by the provider
            come back with is_error set rather than raising.

        Raises:
            InvokeError: if the exchange fails for any reason or the
                provider rejects the request.
        """
        request = JsonRpcRequest(
            method="tools/call",
            params={"name": local_name, "arguments": arguments},
            id=self._transport.next_id(),
        )
        try:
            response = self._transport.send(request)
        except Exception as e:
            raise InvokeError(self.name, local_name, e) from e

        if response.is_error:
            raise InvokeError(self.name, local_name, RuntimeError(response.error_message))

        return CallResult.from_result(response.result)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the transport. Only the first call does anything."""
        if self._closed:
            return
        self._closed = True
        self._transport.stop()


def _initialize(transport: Transport) -> dict[str, Any]:
    request = JsonRpcRequest(
        method="initialize",
        params={
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        },
        id=transport.next_id(),
    )
    response = transport.send(request)
    if response.is_error:
        raise RuntimeError(f"Handshake rejected: {response.error_message}")
    transport.notify(JsonRpcNotification(method="notifications/initialized"))
    result = response.result if isinstance(response.result, dict) else {}
    return result.get("serverInfo") or {}


def _list_tools(transport: Transport) -> list[CapabilityDescriptor]:
    capabilities: list[CapabilityDescriptor] = []
    cursor: str | None = None
    while True:
        params = {"cursor": cursor} if cursor else {}
        response = transport.send(
            JsonRpcRequest(method="tools/list", params=params, id=transport.next_id())
        )
        if response.is_error:
            raise RuntimeError(f"Failed to discover tools: {response.error_message}")

        result = response.result or {}
        # Older servers answer with a bare list of schemas.
        tools = result if isinstance(result, list) else result.get("tools", [])
        capabilities.extend(CapabilityDescriptor.from_schema(t) for t in tools)

        cursor = result.get("nextCursor") if isinstance(result, dict) else None
        if not cursor:
            return capabilities
