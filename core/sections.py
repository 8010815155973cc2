from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

SECTION_HEADINGS: List[Tuple[str, List[str]]] = [
    ("abstract", ["abstract", "summary"]),
    ("introduction", ["introduction", "background"]),
    ("methods", ["materials and methods", "patients and methods", "methodology", "methods", "method"]),
    ("results", ["results", "findings"]),
    ("discussion", ["discussion"]),
    ("conclusion", ["conclusions", "conclusion"]),
    ("references", ["references", "bibliography"]),
]

SECTION_KEYS = [key for key, _ in SECTION_HEADINGS]

_ALIAS_TO_KEY: Dict[str, str] = {
    alias: key for key, aliases in SECTION_HEADINGS for alias in aliases
}

# Longest aliases first so "materials and methods" beats "methods".
_HEADING_RE = re.compile(
    r"^\s*(?:\d+(?:\.\d+)*\.?\s+)?(?P<title>"
    + "|".join(
        alias.replace(" ", r"\s+")
        for alias in sorted(_ALIAS_TO_KEY, key=len, reverse=True)
    )
    + r")\s*[:.\-]*\s*$",
    re.IGNORECASE,
)


def match_heading(line: str) -> Optional[str]:
    """Return the canonical section key if ``line`` is a recognized heading."""
    match = _HEADING_RE.match(line)
    if not match:
        return None
    title = re.sub(r"\s+", " ", match.group("title").lower())
    return _ALIAS_TO_KEY[title]


def split_into_sections(text: str) -> Dict[str, str]:
    """Split raw paper text into canonical sections.

    A recognized heading opens a section that runs until the next recognized
    heading. Unrecognized lines stay with the open section; anything before the
    first heading is dropped. A repeated heading overwrites the earlier body.
    Headings with no body never produce a key.
    """
    sections: Dict[str, str] = {}
    current_key: Optional[str] = None
    buffer: List[str] = []

    def flush() -> None:
        if current_key is None:
            return
        body = "\n".join(buffer).strip()
        if body:
            sections[current_key] = body

    for line in (text or "").splitlines():
        key = match_heading(line)
        if key is not None:
            flush()
            current_key = key
            buffer = []
            continue
        if current_key is not None:
            buffer.append(line)
    flush()
    return sections


def render_sections(sections: Dict[str, str]) -> str:
    return "\n\n".join(f"{key.capitalize()}\n{body}" for key, body in sections.items())


def ensure_sections(sections: Optional[Dict[str, str]], full_text: Optional[str]) -> Dict[str, str]:
    if sections:
        return sections
    if full_text:
        return split_into_sections(full_text)
    return {}
