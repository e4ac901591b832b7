"""Provider-agnostic LLM data structures and the provider base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMMessage:
    """One chat message in provider-neutral form.

    ``tool_calls`` holds dicts with ``id``, ``name`` and ``arguments`` on
    assistant messages; ``tool_call_id`` links a ``tool`` message to its call.
    """

    role: str  # 'system', 'user', 'assistant', 'tool'
    content: str = ""
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class LLMResponse:
    content: str
    tool_calls: list[ToolCall] | None = None
    usage: dict[str, int] | None = None
    stop_reason: str | None = None


class BaseLLMProvider(ABC):
    """Common constructor and interface for all LLM backends."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 1000,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
    ) -> LLMResponse:
        """Return a single completion for *messages*."""
