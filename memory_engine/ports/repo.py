from __future__ import annotations

from typing import Protocol, runtime_checkable

from memory_engine.domain.models import Conversation, Message


@runtime_checkable
class ConversationRepo(Protocol):
    """
    Каноническая (несжатая) история по conversation_id.
    load: нет файла -> пустой Conversation; save/append: сбой записи -> StorageError.
    """

    def load(self, conversation_id: str) -> Conversation:
        ...

    def save(self, convo: Conversation) -> None:
        ...

    def append_messages(self, conversation_id: str, messages: list[Message]) -> None:
        ...
