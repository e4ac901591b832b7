"""LLM provider layer used by the intent classifier.

A common set of data structures over Anthropic, OpenAI and any
OpenAI-compatible endpoint, plus the router that picks one from config.
"""

from sona_wallet.llm.base import (
    BaseLLMProvider,
    LLMMessage,
    LLMResponse,
    ToolCall,
    ToolDefinition,
)
from sona_wallet.llm.router import LLMRouter

__all__ = [
    "BaseLLMProvider",
    "LLMMessage",
    "LLMResponse",
    "LLMRouter",
    "ToolCall",
    "ToolDefinition",
]
