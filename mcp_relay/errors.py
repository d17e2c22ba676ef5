"""Exceptions raised by the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""


class ConfigError(RelayError):
    """Raised when provider configuration or settings are malformed."""


class DuplicateProviderError(RelayError):
    """Raised when two providers share a name."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' is already registered")


class AmbiguousQualifiedNameError(RelayError):
    """Raised when a provider/tool pair cannot be qualified unambiguously."""

    def __init__(self, qualified_name: str, reason: str) -> None:
        self.qualified_name = qualified_name
        self.reason = reason
        super().__init__(f"Ambiguous qualified name '{qualified_name}': {reason}")


class TransportError(RelayError):
    """Raised when a transport cannot deliver a message or read a reply."""


class ConnectError(RelayError):
    """Raised when a provider's transport or handshake fails."""

    def __init__(self, provider: str, cause: BaseException) -> None:
        self.provider = provider
        self.cause = cause
        super().__init__(f"Failed to connect to '{provider}': {cause}")


class UnknownCapabilityError(RelayError):
    """Raised when a qualified name does not map to a connected provider."""

    def __init__(self, qualified_name: str) -> None:
        self.qualified_name = qualified_name
        super().__init__(f"Capability '{qualified_name}' not found")


class InvokeError(RelayError):
    """Raised when a provider fails while executing a tool call."""

    def __init__(self, provider: str, tool: str, cause: BaseException) -> None:
        self.provider = provider
        self.tool = tool
        self.cause = cause
        super().__init__(f"Tool call failed ({provider}/{tool}): {cause}")


class NoProvidersAvailableError(RelayError):
    """Raised when no configured provider could be connected."""

    def __init__(self, failures: list[ConnectError]) -> None:
        self.failures = list(failures)
        if self.failures:
            names = ", ".join(f.provider for f in self.failures)
            message = f"Failed to connect to any provider (failed: {names})"
        else:
            message = "No enabled providers configured"
        super().__init__(message)


class CompletionError(RelayError):
    """Raised when the language-model service call fails."""
