"""Language tag normalisation."""

from __future__ import annotations

import os
from typing import Optional

EXT_TO_LANG = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".scala": "scala",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".cs": "csharp",
    ".php": "php",
    ".rb": "ruby",
    ".swift": "swift",
    ".html": "html",
    ".css": "css",
}

ALIASES = {
    "py": "python",
    "js": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "golang": "go",
    "rs": "rust",
    "c++": "cpp",
    "c#": "csharp",
    "c_sharp": "csharp",
    "cs": "csharp",
    "rb": "ruby",
    "kt": "kotlin",
}


def get_language_for_file(filename: str) -> Optional[str]:
    """Get language name from file extension."""
    _, ext = os.path.splitext(filename)
    return EXT_TO_LANG.get(ext.lower())


def normalize_language(tag: Optional[str], path: Optional[str] = None) -> str:
    """Lower-case ``tag`` and resolve aliases; fall back to the file extension.

    Returns ``""`` when neither gives a language.
    """
    value = (tag or "").strip().lower()
    if value:
        return ALIASES.get(value, value)
    if path:
        return get_language_for_file(path) or ""
    return ""
