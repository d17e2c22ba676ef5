"""
Tool-name namespacing across providers.

Independently written providers routinely reuse tool names ("search",
"get"), so every tool is exposed as ``<provider>__<tool>``. Provider
names may not contain the separator or end with its first character,
which keeps the split on the first separator exact.
"""

from __future__ import annotations

from dataclasses import dataclass

from mcp_relay.config import SEPARATOR
from mcp_relay.errors import AmbiguousQualifiedNameError, UnknownCapabilityError
from mcp_relay.registry import SessionRegistry
from mcp_relay.session import CapabilityDescriptor


def qualify(provider: str, local_name: str) -> str:
    return f"{provider}{SEPARATOR}{local_name}"


def split_qualified(qualified_name: str) -> tuple[str, str] | None:
    """Split on the first separator; None when there is none."""
    provider, sep, local_name = qualified_name.partition(SEPARATOR)
    if not sep or not provider or not local_name:
        return None
    return provider, local_name


@dataclass(frozen=True)
class CatalogEntry:
    qualified_name: str
    provider: str
    capability: CapabilityDescriptor


class CapabilityNamespacer:
    """Flattens the registry's tools into one catalog and maps names back."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def build_catalog(self) -> list[CatalogEntry]:
        """
        Every tool of every connected provider, provider order first.

        Raises:
            AmbiguousQualifiedNameError: if a qualified name would not
                resolve back to its own provider and tool, or repeats.
        """
        catalog: list[CatalogEntry] = []
        seen: set[str] = set()
        for provider, session in self.registry.all():
            for capability in session.list_capabilities():
                qualified = qualify(provider, capability.name)
                if split_qualified(qualified) != (provider, capability.name):
                    raise AmbiguousQualifiedNameError(
                        qualified,
                        f"does not split back into provider '{provider}' "
                        f"and tool '{capability.name}'",
                    )
                if qualified in seen:
                    raise AmbiguousQualifiedNameError(qualified, "listed more than once")
                seen.add(qualified)
                catalog.append(CatalogEntry(qualified, provider, capability))
        return catalog

    def resolve(self, qualified_name: str) -> tuple[str, str]:
        """
        Map a qualified name back to (provider, local tool name).

        Raises:
            UnknownCapabilityError: if the name is malformed or its
                provider is not connected.
        """
        parts = split_qualified(qualified_name)
        if parts is None or parts[0] not in self.registry:
            raise UnknownCapabilityError(qualified_name)
        return parts
