"""
Bridge between the relay's merged catalog and LangChain.

Turns every qualified tool into a LangChain StructuredTool that, when an
agent invokes it, routes the call to the owning provider session.

Usage:
    from mcp_relay.bridge import catalog_to_langchain_tools

    with RelayClient(configs, service) as client:
        tools = catalog_to_langchain_tools(client.registry)
        agent = create_agent(model, tools)
"""

from __future__ import annotations

from typing import Any

from langchain_core.tools import StructuredTool

from mcp_relay.namespacer import CapabilityNamespacer, CatalogEntry
from mcp_relay.registry import SessionRegistry


def capability_to_langchain_tool(
    registry: SessionRegistry,
    entry: CatalogEntry,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to one provider tool.

    Args:
        registry: Registry holding the provider's session
        entry: The catalog entry to expose
        description_override: Optional override for the tool description

    Returns:
        A StructuredTool named by the qualified name, with the provider's
        parameter schema as its argument schema.
    """
    description = (
        description_override
        or entry.capability.description
        or f"MCP tool: {entry.provider}/{entry.capability.name}"
    )

    def _call_provider(**kwargs: Any) -> str:
        """Proxy call to the provider session."""
        session = registry.get(entry.provider)
        if session is None:
            return f"Error calling {entry.qualified_name}: server {entry.provider} not connected"
        try:
            result = session.invoke(entry.capability.name, kwargs)
        except Exception as e:
            return f"Error calling {entry.qualified_name}: {e}"
        return result.content

    return StructuredTool.from_function(
        func=_call_provider,
        name=entry.qualified_name,
        description=description,
        args_schema=entry.capability.input_schema,
    )


def catalog_to_langchain_tools(registry: SessionRegistry) -> list[StructuredTool]:
    """One StructuredTool per tool of every connected provider."""
    catalog = CapabilityNamespacer(registry).build_catalog()
    return [capability_to_langchain_tool(registry, entry) for entry in catalog]


def describe_capability(entry: CatalogEntry) -> str:
    """Render a prompt-style summary of a tool and its parameters."""
    schema = entry.capability.input_schema or {}
    params = schema.get("properties", {})
    required = set(schema.get("required", []))

    lines = [f"## Tool: {entry.qualified_name}", entry.capability.description, ""]
    if params:
        lines.append("Parameters:")
        for pname, pinfo in params.items():
            ptype = pinfo.get("type", "any")
            pdesc = pinfo.get("description", "")
            marker = "" if pname in required else ", optional"
            lines.append(f"  - {pname} ({ptype}{marker}): {pdesc}")

    return "\n".join(lines)
