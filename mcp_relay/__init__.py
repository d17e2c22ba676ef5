"""
mcp-relay: one chat loop over many tool providers.

Architecture:
    ┌──────────────┐   stdio / HTTP / SSE   ┌───────────────┐
    │ RelayClient  │ ─────────────────────  │ Tool provider │ × N
    │  (sessions)  │       JSON-RPC         │               │
    └──────┬───────┘                        └───────────────┘
           │ catalog: provider__tool
    ┌──────┴───────┐
    │ Conversation │ ───── Chat Completions ─────  LLM
    │    Loop      │
    └──────────────┘

Each configured provider is reached over its own transport. Their tools
are merged into one catalog, every name prefixed with the provider's
name, and the model's tool calls are routed back to the right provider.

The LangChain bridge (mcp_relay.bridge) is imported lazily so the
bundled tool servers stay importable without langchain installed.
"""

__version__ = "0.1.0"

from mcp_relay.config import ProviderConfig, RelaySettings, TransportKind, load_provider_configs
from mcp_relay.conversation import ConversationLoop
from mcp_relay.errors import (
    AmbiguousQualifiedNameError,
    CompletionError,
    ConfigError,
    ConnectError,
    DuplicateProviderError,
    InvokeError,
    NoProvidersAvailableError,
    RelayError,
    TransportError,
    UnknownCapabilityError,
)
from mcp_relay.lifecycle import RelayClient
from mcp_relay.namespacer import CapabilityNamespacer, CatalogEntry, qualify
from mcp_relay.registry import SessionRegistry
from mcp_relay.session import CallResult, CapabilityDescriptor, ProviderSession


def catalog_to_langchain_tools(*args, **kwargs):
    from mcp_relay.bridge import catalog_to_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "AmbiguousQualifiedNameError",
    "CallResult",
    "CapabilityDescriptor",
    "CapabilityNamespacer",
    "CatalogEntry",
    "CompletionError",
    "ConfigError",
    "ConnectError",
    "ConversationLoop",
    "DuplicateProviderError",
    "InvokeError",
    "NoProvidersAvailableError",
    "ProviderConfig",
    "ProviderSession",
    "RelayClient",
    "RelayError",
    "RelaySettings",
    "SessionRegistry",
    "TransportError",
    "TransportKind",
    "UnknownCapabilityError",
    "catalog_to_langchain_tools",
    "load_provider_configs",
    "qualify",
]
