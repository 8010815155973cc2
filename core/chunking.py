from __future__ import annotations

import re
from typing import Dict, List

from .models import Chunk

SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text or "").strip()


def split_sentences(text: str) -> List[str]:
    normalized = normalize_whitespace(text)
    if not normalized:
        return []
    return [s for s in SENTENCE_BOUNDARY_RE.split(normalized) if s]


def chunk_section(text: str, section: str, max_chunk_chars: int) -> List[Chunk]:
    """Greedily pack whole sentences into chunks of at most ``max_chunk_chars``.

    A sentence longer than the limit is emitted on its own rather than cut.
    Joining the chunk texts with single spaces gives back the whitespace
    normalized input.
    """
    if max_chunk_chars <= 0:
        raise ValueError("max_chunk_chars must be positive")
    chunks: List[Chunk] = []
    buffer: List[str] = []
    length = 0

    def flush() -> None:
        nonlocal buffer, length
        if buffer:
            chunks.append(Chunk(section=section, text=" ".join(buffer), index=len(chunks)))
        buffer = []
        length = 0

    for sentence in split_sentences(text):
        added = len(sentence) + (1 if buffer else 0)
        if buffer and length + added > max_chunk_chars:
            flush()
            added = len(sentence)
        buffer.append(sentence)
        length += added
    flush()
    return chunks


def chunk_sections(sections: Dict[str, str], max_chunk_chars: int) -> List[Chunk]:
    out: List[Chunk] = []
    for key, body in sections.items():
        out.extend(chunk_section(body, key, max_chunk_chars))
    return out
