from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from memory_engine.domain.models import Message
from memory_engine.ports.tokens import TokenCounter


@dataclass
class ApproxTokenCounter(TokenCounter):
    """1 токен ~ 4 символа + фиксированный overhead на сообщение. Без зависимостей."""

    chars_per_token: int = 4
    tokens_per_message: int = 3

    def count_text(self, text: str) -> int:
        n = len(text or "")
        return (n + self.chars_per_token - 1) // self.chars_per_token

    def count_messages(self, messages: Sequence[Message]) -> int:
        return sum(self.tokens_per_message + self.count_text(m.content or "") for m in messages)
