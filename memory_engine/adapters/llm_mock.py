from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from memory_engine.domain.errors import ProviderError
from memory_engine.domain.models import Message
from memory_engine.ports.llm import LLMClient, LLMResponse


def _last_user(messages: Sequence[Message]) -> Optional[Message]:
    return next((m for m in reversed(messages) if m.role == "user"), None)


class EchoMockLLM(LLMClient):
    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_output_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> LLMResponse:
        last_user = _last_user(messages)
        text = f"[mock] Reply to: {last_user.content if last_user else ''}"
        return LLMResponse(text=text, usage={"input_tokens": 0, "output_tokens": 0})


@dataclass
class ScriptedMockLLM(LLMClient):
    """
    Ответ выбирается по первой подстроке из rules, найденной в последнем user-сообщении.
    Значение None в rules -> ProviderError (имитация недоступного провайдера).
    """

    rules: Dict[str, Optional[str]] = field(default_factory=dict)
    default: Optional[str] = "[mock] No idea what to say."
    calls: List[Dict[str, object]] = field(default_factory=list)

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_output_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> LLMResponse:
        last_user = _last_user(messages)
        prompt = last_user.content if last_user else ""
        self.calls.append({"prompt": prompt, "json_mode": json_mode, "model": model})

        low = prompt.lower()
        for k, v in self.rules.items():
            if k.lower() in low:
                if v is None:
                    raise ProviderError(f"scripted failure for {k!r}")
                return LLMResponse(text=v, usage={"input_tokens": 0, "output_tokens": 0})

        if self.default is None:
            raise ProviderError("scripted failure (no rule matched)")
        return LLMResponse(text=self.default, usage={"input_tokens": 0, "output_tokens": 0})
