"""Text preprocessing applied to code before it is embedded."""

from __future__ import annotations

import re
from typing import Optional

MAX_CHARS = 8000
TRUNCATION_MARKER = "..."

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
# `//` not preceded by ':' so URLs survive
_SLASH_COMMENT = re.compile(r"(?<!:)//[^\n]*")
# `#` at line start or after whitespace and followed by whitespace; keeps #include, #!
_HASH_COMMENT = re.compile(r"(?:^|(?<=\s))#(?=\s|$)[^\n]*", re.MULTILINE)
_WHITESPACE = re.compile(r"\s+")


def normalize(content: Optional[str], max_chars: int = MAX_CHARS) -> str:
    """Strip comments, collapse whitespace and cap the length of ``content``.

    Best-effort and language-agnostic: this is a heuristic, not a parser.
    The result is a single line; when it is longer than ``max_chars`` it is
    cut and the truncation marker appended. Empty input gives ``""``.
    """
    if not content:
        return ""

    text = _BLOCK_COMMENT.sub(" ", content)
    text = _SLASH_COMMENT.sub(" ", text)
    text = _HASH_COMMENT.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()

    if len(text) > max_chars:
        text = text[:max_chars] + TRUNCATION_MARKER
    return text
