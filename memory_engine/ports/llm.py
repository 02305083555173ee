from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, TypedDict, runtime_checkable
from collections.abc import Sequence

from memory_engine.domain.models import Message


class LLMUsage(TypedDict, total=False):
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class LLMResponse:
    text: str
    usage: LLMUsage = field(default_factory=dict)


@runtime_checkable
class LLMClient(Protocol):
    """
    Общий интерфейс к LLM (реальный/мок).
    json_mode=True -> строгий JSON-объект в ответе.
    Любой сбой транспорта -> ProviderError.
    """

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_output_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> LLMResponse:
        ...
