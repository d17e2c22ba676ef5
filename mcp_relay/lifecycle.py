"""
Relay client lifecycle: connect to every configured provider, run
queries, and close everything on the way out.

Usage:
    configs = load_provider_configs("relay_servers.json")
    service = OpenAIChatService.from_settings(RelaySettings.from_env())

    with RelayClient(configs, service) as client:
        print(client.run_once("What's the forecast for 40.7, -74.0?"))

Leaving the with-block closes every provider that connected, whether
the block finished, returned early, or raised.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from mcp_relay.config import ProviderConfig
from mcp_relay.conversation import ConversationLoop
from mcp_relay.errors import ConnectError, NoProvidersAvailableError, RelayError
from mcp_relay.llm import CompletionService
from mcp_relay.registry import SessionRegistry
from mcp_relay.session import ProviderSession

logger = logging.getLogger(__name__)

EXIT_SENTINEL = "quit"


class RelayClient:
    """
    Owns the session registry for the duration of a run.

    Responsibilities:
    - Connect to enabled providers in declared order, tolerating failures
    - Route queries through a ConversationLoop
    - Close every connected provider exactly once on shutdown
    """

    def __init__(
        self,
        configs: Sequence[ProviderConfig],
        service: CompletionService,
        connector: Callable[[ProviderConfig], ProviderSession] = ProviderSession.connect,
        on_progress: Callable[[str], None] | None = None,
    ):
        self.configs = list(configs)
        self.service = service
        self.connector = connector
        self.registry = SessionRegistry()
        self.failures: list[ConnectError] = []
        self.close_failures: list[tuple[str, Exception]] = []
        self.loop = ConversationLoop(self.registry, service, on_progress=on_progress)

    def connect_all(self) -> SessionRegistry:
        """
        Connect every enabled provider.

        A provider that fails to connect is logged and recorded in
        self.failures; the rest are still attempted.

        Raises:
            NoProvidersAvailableError: if nothing connected.
        """
        enabled = [c for c in self.configs if c.enabled]
        skipped = [c.name for c in self.configs if not c.enabled]
        if skipped:
            logger.info(f"Skipping disabled servers: {', '.join(skipped)}")
        logger.info(f"Connecting to servers: {', '.join(c.name for c in enabled)}")

        for config in enabled:
            try:
                session = self.connector(config)
            except ConnectError as e:
                logger.error(f"Failed to connect to server '{config.name}': {e.cause}")
                self.failures.append(e)
                continue
            except Exception as e:
                logger.error(f"Failed to connect to server '{config.name}': {e}")
                self.failures.append(ConnectError(config.name, e))
                continue
            try:
                self.registry.add(config.name, session)
            except RelayError:
                session.close()
                raise

        if len(self.registry) == 0:
            raise NoProvidersAvailableError(self.failures)
        return self.registry

    def run_once(self, query: str) -> str:
        """Answer a single query."""
        return self.loop.run(query)

    def run_interactive(self, read_line: Callable[[str], str], write: Callable[[str], None]) -> None:
        """
        Prompt for queries until the user types 'quit' or input ends.

        Args:
            read_line: Called with the prompt, returns one line of input
                (raises EOFError at end of input, like input()).
            write: Receives every line of output.

        A query that fails is reported and the loop carries on.
        """
        write("\nMCP Client Started!")
        write(f"Type your queries or '{EXIT_SENTINEL}' to exit.")
        while True:
            try:
                query = read_line("\nQuery: ").strip()
            except EOFError:
                break
            if query.lower() == EXIT_SENTINEL:
                break
            if not query:
                continue
            try:
                write("\n" + self.run_once(query))
            except Exception as e:
                logger.debug("Query failed", exc_info=True)
                write(f"\nError: {e}")

    def shutdown(self) -> list[tuple[str, Exception]]:
        """Close every connected provider. Never raises."""
        failures = self.registry.close_all()
        self.close_failures.extend(failures)
        return failures

    def __enter__(self) -> "RelayClient":
        try:
            self.connect_all()
        except BaseException:
            self.shutdown()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
