from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from memory_engine.domain.memory_models import ExtractedFact
from memory_engine.domain.models import Message


@runtime_checkable
class FactExtractor(Protocol):
    """Извлекает факты о пользователе из окна диалога."""

    def extract(self, messages: Sequence[Message]) -> list[ExtractedFact]:
        ...
