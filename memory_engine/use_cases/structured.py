from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from memory_engine.domain.errors import ProviderError
from memory_engine.domain.models import turn
from memory_engine.ports.llm import LLMClient

log = logging.getLogger(__name__)


class ReplyStatus(str, Enum):
    OK = "ok"
    PARSE_FAILED = "parse_failed"
    TRANSPORT_FAILED = "transport_failed"


@dataclass(frozen=True)
class StructuredReply:
    status: ReplyStatus
    data: Any = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.OK


def strip_code_fences(content: str) -> str:
    trimmed = (content or "").strip()
    if not trimmed.startswith("```"):
        return trimmed
    lines = trimmed.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def request_json(
    llm: LLMClient,
    prompt: str,
    *,
    max_output_tokens: int,
    temperature: float,
    model: Optional[str] = None,
    json_mode: bool = True,
) -> StructuredReply:
    """Один вызов модели -> распарсенный JSON. Исключений наружу не бросает."""
    try:
        resp = llm.generate(
            [turn("user", prompt)],
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            json_mode=json_mode,
            model=model,
        )
    except ProviderError as e:
        return StructuredReply(ReplyStatus.TRANSPORT_FAILED, error=str(e))

    text = strip_code_fences(resp.text)
    try:
        return StructuredReply(ReplyStatus.OK, data=json.loads(text))
    except ValueError as e:
        log.debug("unparsable model output: %r", text[:200])
        return StructuredReply(ReplyStatus.PARSE_FAILED, error=str(e))
