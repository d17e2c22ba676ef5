"""Conversation turns and the model's call requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class CallRequest:
    """
    A model's request to run one tool.

    ``arguments`` is the decoded JSON payload. When the model sent
    something that does not decode, the raw string is kept instead so
    the failure can be reported back to the model.
    """
    id: str
    name: str
    arguments: Any = field(default_factory=dict)


@dataclass(frozen=True)
class Completion:
    """One answer from the language model."""
    text: str | None = None
    calls: list[CallRequest] = field(default_factory=list)


@dataclass(frozen=True)
class UserTurn:
    content: str


@dataclass(frozen=True)
class AssistantTextTurn:
    content: str


@dataclass(frozen=True)
class AssistantCallTurn:
    call: CallRequest


@dataclass(frozen=True)
class ToolResultTurn:
    call_id: str
    content: str
    is_error: bool = False


Turn = Union[UserTurn, AssistantTextTurn, AssistantCallTurn, ToolResultTurn]
