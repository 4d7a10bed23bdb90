"""
Approximate token counting for tool payloads, backed by tiktoken.
"""
import json
from functools import lru_cache
from typing import Any

import tiktoken

from ..settings import get_settings


@lru_cache(maxsize=1)
def get_encoder() -> tiktoken.Encoding:
    """Lazy-load the configured encoding (first call may fetch the BPE file)."""
    return tiktoken.get_encoding(get_settings().tokenizer_encoding)


def payload_to_text(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(payload)


def estimate_tokens(text: str) -> int:
    """Return the approximate number of tokens in text."""
    if not text:
        return 0
    return len(get_encoder().encode(text, disallowed_special=()))


def estimate_payload_tokens(*payloads: Any) -> int:
    return sum(estimate_tokens(payload_to_text(p)) for p in payloads)


def format_token_count(tokens: int) -> str:
    """Format a token count for display, e.g. 950 -> "950", 1234 -> "1.2K"."""
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}".rstrip("0").rstrip(".") + "K"
    return str(tokens)
