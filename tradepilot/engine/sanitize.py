"""
Prompt Sanitization
===================

Untrusted text (news headlines, stored memory, symbols typed by users)
is cleaned before it is interpolated into the reasoning prompt.
"""

import re

MAX_LENGTHS = {
    "headline": 200,
    "memory": 1000,
    "default": 500,
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ROLE_MARKERS = re.compile(r"\b(IGNORE|DISREGARD|SYSTEM|ASSISTANT|USER|HUMAN)[\s:]+", re.IGNORECASE)
_SYMBOL_CHARS = re.compile(r"[^A-Z0-9.\-^]")
_TRAILING_BACKSLASHES = re.compile(r"\\+$")


def _drop_split_escape(text: str) -> str:
    # An odd run of trailing backslashes means the cap cut an escape pair
    match = _TRAILING_BACKSLASHES.search(text)
    if match and len(match.group(0)) % 2:
        return text[:-1]
    return text


def sanitize_for_prompt(text, kind: str = "default") -> str:
    """
    Neutralize text before it reaches the prompt.

    Strips control characters and role markers that could read as an
    instruction, escapes backslashes and double quotes, then caps the
    length for the given kind (headline, memory or default). The cap
    never leaves half of an escape pair at the end.
    """
    if not text:
        return ""
    cleaned = _CONTROL_CHARS.sub("", str(text))
    cleaned = _ROLE_MARKERS.sub("", cleaned)
    cleaned = cleaned.replace("\\", "\\\\").replace('"', '\\"')
    limit = MAX_LENGTHS.get(kind, MAX_LENGTHS["default"])
    return _drop_split_escape(cleaned[:limit]).strip()


def sanitize_symbol(symbol) -> str:
    """Uppercase ticker restricted to letters, digits, '.', '-' and '^'."""
    if not symbol:
        return "UNKNOWN"
    cleaned = _SYMBOL_CHARS.sub("", str(symbol).upper())[:10]
    return cleaned or "UNKNOWN"
