"""
Text helpers.

'normalize_message_text' is what gets stored: user-authored text keeps its
line breaks and tabs. 'sanitize_text' is applied before any model call.
"""

import re

from messaging_toolkit.config import MESSAGE_TEXT_MAX_CHARS

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F-\x9F]")
_MENTION = re.compile(r"@([a-zA-Z0-9._-]+)")


def normalize_message_text(text: str, max_chars: int = MESSAGE_TEXT_MAX_CHARS) -> str:
    """Strip surrounding whitespace and cap the length."""
    return text.strip()[:max_chars]


def sanitize_text(text: str, max_chars: int = MESSAGE_TEXT_MAX_CHARS) -> str:
    """Strip surrounding whitespace, drop control characters and cap the length."""
    return _CONTROL_CHARS.sub("", text.strip())[:max_chars]


def truncate(text: str, max_chars: int) -> str:
    return text[:max_chars]


def extract_mentions(text: str) -> list[str]:
    """Return the handles of all '@name' mentions in order of appearance, without duplicates."""
    return list(dict.fromkeys(_MENTION.findall(text)))
