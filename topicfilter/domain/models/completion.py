"""Domain models for chat completion requests and responses.

A CompletionRequest is the provider-neutral description of one call; each
provider adapter translates it into its own HTTP contract.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, TypedDict

from .common import MessageRole, TokenUsage

DEFAULT_MAX_TOKENS = 100


class ChatMessage(TypedDict):
    """Represents a message structure expected by chat completion APIs."""
    role: MessageRole
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    """Canonical chat completion request, constructed per call."""
    messages: Tuple[ChatMessage, ...]
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = 0.0
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stop: Optional[Tuple[str, ...]] = None

    def message_list(self) -> List[ChatMessage]:
        """Returns fresh message dicts suitable for an SDK call."""
        return [ChatMessage(role=m["role"], content=m["content"]) for m in self.messages]


@dataclass(frozen=True)
class CompletionResponse:
    """Structured response from a completion provider."""
    content: str
    finish_reason: Optional[str] = None
    model_name: Optional[str] = None
    token_usage: Optional[TokenUsage] = field(default=None, compare=False)
    latency_ms: Optional[float] = field(default=None, compare=False)
