"""Registry of connected provider sessions."""

from __future__ import annotations

import logging
from typing import Iterator

from mcp_relay.errors import DuplicateProviderError
from mcp_relay.session import ProviderSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Owns every connected ProviderSession, keyed by provider name.

    Iteration follows the order sessions were added, which is the order
    providers connected. Sessions leave the registry only through
    close_all().
    """

    def __init__(self):
        self._sessions: dict[str, ProviderSession] = {}

    def add(self, name: str, session: ProviderSession) -> None:
        if name in self._sessions:
            raise DuplicateProviderError(name)
        self._sessions[name] = session

    def get(self, name: str) -> ProviderSession | None:
        return self._sessions.get(name)

    def all(self) -> list[tuple[str, ProviderSession]]:
        return list(self._sessions.items())

    def close_all(self) -> list[tuple[str, Exception]]:
        """
        Close every session and empty the registry.

        A session that fails to close is logged and recorded; the rest
        are still closed. Never raises.

        Returns:
            (provider name, exception) for each session that failed to close.
        """
        failures: list[tuple[str, Exception]] = []
        for name, session in self._sessions.items():
            try:
                session.close()
                logger.info(f"Closed {name}")
            except Exception as e:
                logger.error(f"Failed to close {name}: {e}")
                failures.append((name, e))
        self._sessions.clear()
        return failures

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
