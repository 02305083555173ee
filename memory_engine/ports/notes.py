from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotesStore(Protocol):
    """Файловые заметки: долговременные + на сегодня. Из пайплайна только чтение."""

    def read_long_term(self) -> str:
        ...

    def read_today(self) -> str:
        ...

    def get_memory_context(self, max_chars: int) -> str:
        ...
