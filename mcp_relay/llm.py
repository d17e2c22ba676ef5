"""
Language-model completion service.

The conversation loop only needs one call: send the turns so far plus
the tool catalog, get back optional text and zero or more tool calls.
OpenAIChatService implements that over the Chat Completions API, which
any OpenAI-compatible endpoint (set OPENAI_BASE_URL) also speaks.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from openai import OpenAI, OpenAIError

from mcp_relay.config import RelaySettings
from mcp_relay.errors import CompletionError
from mcp_relay.namespacer import CatalogEntry
from mcp_relay.turns import (
    AssistantCallTurn,
    AssistantTextTurn,
    CallRequest,
    Completion,
    ToolResultTurn,
    Turn,
    UserTurn,
)

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    """Anything that can answer a conversation with text and tool calls."""

    def complete(self, turns: Sequence[Turn], catalog: Sequence[CatalogEntry]) -> Completion:
        ...


def turn_to_message(turn: Turn) -> dict[str, Any]:
    """Render one turn as a Chat Completions message."""
    if isinstance(turn, UserTurn):
        return {"role": "user", "content": turn.content}
    if isinstance(turn, AssistantTextTurn):
        return {"role": "assistant", "content": turn.content}
    if isinstance(turn, AssistantCallTurn):
        call = turn.call
        arguments = call.arguments if isinstance(call.arguments, str) else json.dumps(call.arguments)
        return {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": arguments},
                }
            ],
        }
    if isinstance(turn, ToolResultTurn):
        return {"role": "tool", "tool_call_id": turn.call_id, "content": turn.content}
    raise TypeError(f"Unknown turn type: {type(turn).__name__}")


def catalog_to_tools(catalog: Sequence[CatalogEntry]) -> list[dict[str, Any]]:
    """Render the catalog as function tools named by qualified name."""
    return [
        {
            "type": "function",
            "function": {
                "name": entry.qualified_name,
                "description": f"[{entry.provider}] {entry.capability.description}",
                "parameters": entry.capability.input_schema,
            },
        }
        for entry in catalog
    ]


def _parse_arguments(raw: str | None) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model sent undecodable tool arguments: {raw[:200]}")
        return raw


class OpenAIChatService:
    """CompletionService backed by the OpenAI Chat Completions API."""

    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "OpenAIChatService":
        kwargs: dict[str, Any] = {"api_key": settings.require_api_key()}
        if settings.openai_base_url:
            kwargs["base_url"] = settings.openai_base_url
        return cls(OpenAI(**kwargs), settings.openai_model)

    def complete(self, turns: Sequence[Turn], catalog: Sequence[CatalogEntry]) -> Completion:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [turn_to_message(t) for t in turns],
        }
        tools = catalog_to_tools(catalog)
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        logger.debug(f"Requesting completion: {len(turns)} turns, {len(tools)} tools")
        try:
            response = self.client.chat.completions.create(**request)
        except OpenAIError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        texts: list[str] = []
        calls: list[CallRequest] = []
        for choice in response.choices:
            message = choice.message
            if message.content:
                texts.append(message.content)
            for tool_call in message.tool_calls or []:
                calls.append(
                    CallRequest(
                        id=tool_call.id,
                        name=tool_call.function.name,
                        arguments=_parse_arguments(tool_call.function.arguments),
                    )
                )

        return Completion(text="\n".join(texts) if texts else None, calls=calls)
