from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from memory_engine.domain.models import Message
from memory_engine.ports.tokens import TokenCounter


@dataclass
class TiktokenTokenCounter(TokenCounter):
    """
    Кодировка по имени модели (если tiktoken её знает), иначе encoding_name.
    Стоимость сообщения: tokens_per_message + tokens(content), аддитивно по сообщениям,
    чтобы бюджет recall-блока можно было набирать по одной строке.
    """
    encoding_name: str = "cl100k_base"
    model_name: Optional[str] = None
    tokens_per_message: int = 3

    def __post_init__(self) -> None:
        import tiktoken
        enc = None
        if self.model_name:
            try:
                enc = tiktoken.encoding_for_model(self.model_name.split("/")[-1])
            except KeyError:
                enc = None
        self._enc = enc or tiktoken.get_encoding(self.encoding_name)

    def count_text(self, text: str) -> int:
        return len(self._enc.encode(text or "", disallowed_special=()))

    def count_messages(self, messages: Sequence[Message]) -> int:
        return sum(self.tokens_per_message + self.count_text(m.content or "") for m in messages)
