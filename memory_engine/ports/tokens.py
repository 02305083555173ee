from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from memory_engine.domain.models import Message


@runtime_checkable
class TokenCounter(Protocol):
    """Считает токены (нужно для бюджета блока recall)."""

    def count_text(self, text: str) -> int:
        ...

    def count_messages(self, messages: Sequence[Message]) -> int:
        ...
