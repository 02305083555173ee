from __future__ import annotations

import re

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

PROMPT_BLOCK_MAX_CHARS = 2000
PROMPT_QUOTE_MAX_CHARS = 500


def sanitize_storage_content(text: str) -> str:
    """Чистит текст перед записью в память: управляющие символы, разметка."""
    text = _CONTROL_RE.sub("", text or "")
    return text.replace("<", "&lt;").replace(">", "&gt;")


def sanitize_for_prompt(text: str, max_chars: int = PROMPT_BLOCK_MAX_CHARS) -> str:
    """Нейтрализует fence-маркеры и html-скобки в пользовательском тексте."""
    s = (text or "").replace("```", "'''")
    s = s.replace("</", "&lt;/")
    s = s.replace("<", "&lt;").replace(">", "&gt;")
    if len(s) > max_chars:
        s = s[:max_chars] + "..."
    return s


def quote_for_prompt(text: str, max_chars: int = PROMPT_QUOTE_MAX_CHARS) -> str:
    s = (text or "").replace('"', '\\"').replace("\n", " ")
    return s[:max_chars]


def normalize_for_compare(text: str) -> str:
    return " ".join((text or "").split()).casefold()
