"""Helpers for coercing LLM text into pydantic models."""

from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import TypeVar

from pydantic import BaseModel

from fin_crag.models.llm import ChatMessage, ChatOptions

T = TypeVar("T", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


def parse_json_content(content: str) -> dict:
    """Parse a JSON object out of model text, tolerating markdown fences and leading prose."""
    text = _FENCE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise
        data = json.loads(text[start : end + 1])
    if isinstance(data, list):
        return {"items": data}
    return data


def parse_structured(content: str, schema: type[T]) -> T:
    return schema.model_validate(parse_json_content(content))


async def chat_structured(
    client, messages: list[ChatMessage], schema: type[T], options: ChatOptions | None = None
) -> T:
    """Structured call through ``client``; plain JSON-mode chat when it has no native support."""
    native = getattr(client, "chat_structured", None)
    if native is not None:
        return await native(messages, schema, options)
    opts = replace(options or ChatOptions(), response_format="json")
    response = await client.chat(messages, opts)
    return parse_structured(response.content, schema)
