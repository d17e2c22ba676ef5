"""
The query loop: model proposes tool calls, we run them, the model sees
the results, repeat until it answers without asking for more.

    loop = ConversationLoop(registry, service)
    print(loop.run("Any weather alerts for NY?"))

Per-call problems (unknown tool, bad arguments, provider failure) are
written into the conversation as error results so the model can react
to them on its next turn. Only a failing model call escapes run().
"""

from __future__ import annotations

import json
import logging
from typing import Callable

from mcp_relay.errors import InvokeError, UnknownCapabilityError
from mcp_relay.llm import CompletionService
from mcp_relay.namespacer import CapabilityNamespacer
from mcp_relay.registry import SessionRegistry
from mcp_relay.turns import (
    AssistantCallTurn,
    AssistantTextTurn,
    CallRequest,
    ToolResultTurn,
    Turn,
    UserTurn,
)

logger = logging.getLogger(__name__)


class ConversationLoop:
    """Drives one query at a time through the model and the providers."""

    def __init__(
        self,
        registry: SessionRegistry,
        service: CompletionService,
        on_progress: Callable[[str], None] | None = None,
    ):
        self.registry = registry
        self.namespacer = CapabilityNamespacer(registry)
        self.service = service
        self.on_progress = on_progress

    def run(self, query: str) -> str:
        """
        Answer one query.

        Returns:
            Every model text, progress line and tool result produced along
            the way, joined by newlines.

        Raises:
            CompletionError: if the model service fails.
        """
        turns: list[Turn] = [UserTurn(query)]
        output: list[str] = []
        # The full catalog and history are re-sent on every model turn.
        catalog = self.namespacer.build_catalog()

        while True:
            completion = self.service.complete(turns, catalog)
            if completion.text:
                output.append(completion.text)
                turns.append(AssistantTextTurn(completion.text))

            if not completion.calls:
                return "\n".join(output)

            for call in completion.calls:
                self._dispatch(call, turns, output)

    def _dispatch(self, call: CallRequest, turns: list[Turn], output: list[str]) -> None:
        turns.append(AssistantCallTurn(call))

        try:
            provider, tool = self.namespacer.resolve(call.name)
        except UnknownCapabilityError as e:
            logger.warning(f"Call {call.id}: {e}")
            self._fail(call, f"[Error: capability {call.name} not found]", turns, output)
            return

        if not isinstance(call.arguments, dict):
            self._fail(
                call,
                f"[Error: arguments for {call.name} must be a JSON object, got {call.arguments!r}]",
                turns,
                output,
            )
            return

        self._emit(
            f"[Calling tool {tool} on server {provider} with args {json.dumps(call.arguments)}]",
            output,
        )
        try:
            result = self.registry.get(provider).invoke(tool, call.arguments)
        except InvokeError as e:
            logger.error(f"Call {call.id}: {e}")
            self._fail(call, f"[Error: {e}]", turns, output)
            return

        self._emit(result.content, output)
        turns.append(ToolResultTurn(call.id, result.content, is_error=result.is_error))

    def _fail(self, call: CallRequest, message: str, turns: list[Turn], output: list[str]) -> None:
        self._emit(message, output)
        turns.append(ToolResultTurn(call.id, message, is_error=True))

    def _emit(self, line: str, output: list[str]) -> None:
        output.append(line)
        if self.on_progress:
            self.on_progress(line)
