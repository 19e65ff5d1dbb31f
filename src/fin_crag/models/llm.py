"""Provider-neutral chat types shared by every LLM adapter."""

from __future__ import annotations

from dataclasses import dataclass, field

# Messages travel as plain {"role": ..., "content": ...} dicts.
ChatMessage = dict[str, str]


@dataclass
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float | None = None
    stop: list[str] | None = None
    response_format: str = "text"  # text, json


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResponse:
    content: str
    finish_reason: str = "stop"
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    latency_ms: float = 0.0


@dataclass
class StreamChunk:
    content: str
    done: bool = False
    usage: TokenUsage | None = None
