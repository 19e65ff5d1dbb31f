"""Token counting for the context budget."""

from __future__ import annotations

import tiktoken

from fin_crag.config.constants import TIKTOKEN_ENCODING


def count_tokens(text: str) -> int:
    if not text:
        return 0
    # get_encoding caches the loaded encoding per process.
    enc = tiktoken.get_encoding(TIKTOKEN_ENCODING)
    return len(enc.encode(text, disallowed_special=()))
