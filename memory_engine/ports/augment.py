from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from memory_engine.domain.models import Conversation, Message


@runtime_checkable
class ContextAugmentor(Protocol):
    """
    Дополняет контекст перед вызовом модели (recall из векторной памяти).
    Возвращает новый список; сбой источника -> контекст без изменений, не исключение.
    """

    def augment(self, convo: Conversation, draft_context: Sequence[Message]) -> list[Message]:
        ...
