from __future__ import annotations

from functools import lru_cache
from typing import Optional

import tiktoken


@lru_cache(maxsize=32)
def _encoding_for_model(model: str) -> "tiktoken.Encoding":
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("o200k_base")


def estimate_tokens(text: str, model: str) -> int:
    if not text:
        return 0
    return len(_encoding_for_model(model).encode(text))


def estimate_total_tokens(
    system_prompt: Optional[str], user_prompt: str, max_output_tokens: Optional[int], model: str
) -> int:
    return (
        estimate_tokens(system_prompt or "", model)
        + estimate_tokens(user_prompt, model)
        + (max_output_tokens or 0)
    )


def truncate_to_tokens(text: str, max_tokens: int, model: str) -> str:
    """Trim ``text`` to at most ``max_tokens`` tokens, keeping the head."""
    if not text or max_tokens <= 0:
        return ""
    # Every token covers at least one character.
    if len(text) <= max_tokens:
        return text
    enc = _encoding_for_model(model)
    tokens = enc.encode(text)
    if len(tokens) <= max_tokens:
        return text
    return enc.decode(tokens[:max_tokens])
