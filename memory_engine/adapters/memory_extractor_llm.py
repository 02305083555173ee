from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from memory_engine.adapters.memory_extractor_rules import HeuristicFactExtractor
from memory_engine.domain.memory_models import ExtractedFact
from memory_engine.domain.models import Message
from memory_engine.domain.text import sanitize_for_prompt, sanitize_storage_content
from memory_engine.ports.llm import LLMClient
from memory_engine.ports.memory_extractor import FactExtractor
from memory_engine.use_cases.structured import ReplyStatus, request_json

log = logging.getLogger(__name__)

TRIVIAL_PATTERNS = [
    re.compile(
        r"^(ok|okay|yes|no|thanks|sure|got it|cool|nice|great|hmm|ah|oh|lol|yep|yeah)[.!?]?\s*$",
        re.IGNORECASE,
    ),
    re.compile(r"^[\s\W]*$"),
]

IMPORTANCE_WEIGHTS = {"high": 0.9, "medium": 0.7, "low": 0.3}

MIN_USER_TURNS = 3
MIN_TRANSCRIPT_CHARS = 50
WINDOW_TURNS = 20
MAX_TURN_CHARS = 500

EXTRACTION_PROMPT = """Analyze the conversation and extract key facts.

<conversation>
{conversation}
</conversation>

Extract:
- Personal info (name, job, location, preferences)
- Decisions, requirements, relationships
- Technical preferences (tools, languages)

Rules:
- Facts only, no opinions or temporary context
- Self-contained statements
- Skip greetings and small talk
- At most {max_facts} facts

Return a JSON object: {{"facts": [{{"fact": "...", "importance": "high|medium|low"}}]}}
Example: {{"facts": [{{"fact": "User's name is John", "importance": "high"}}]}}
"""


def is_trivial(text: str) -> bool:
    t = (text or "").strip()
    return not t or any(rx.match(t) for rx in TRIVIAL_PATTERNS)


def format_conversation(messages: Sequence[Message]) -> str:
    parts: List[str] = []
    for m in list(messages)[-WINDOW_TURNS:]:
        if m.role not in ("user", "assistant"):
            continue
        parts.append(f"{m.role.upper()}: {(m.content or '')[:MAX_TURN_CHARS]}")
    # весь транскрипт целиком: экранирование и общий лимит PROMPT_BLOCK_MAX_CHARS
    return sanitize_for_prompt("\n".join(parts))


@dataclass
class LLMFactExtractor(FactExtractor):
    """
    Решает, стоит ли звать модель, и достаёт небольшой набор фактов.
    Сбой транспорта или мусор в ответе -> эвристика (HeuristicFactExtractor).
    """

    llm: LLMClient
    model: Optional[str] = None
    max_facts: int = 5
    max_output_tokens: int = 300
    temperature: float = 0.1
    fallback: FactExtractor = field(default_factory=HeuristicFactExtractor)

    def extract(self, messages: Sequence[Message]) -> List[ExtractedFact]:
        if not messages:
            return []

        user_msgs = [m for m in messages if m.role == "user"]
        if len(user_msgs) < MIN_USER_TURNS:
            return []
        if is_trivial(user_msgs[-1].content):
            return []

        conversation = format_conversation(messages)
        if len(conversation) < MIN_TRANSCRIPT_CHARS:
            return []

        reply = request_json(
            self.llm,
            EXTRACTION_PROMPT.format(conversation=conversation, max_facts=self.max_facts),
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            model=self.model,
        )
        facts = self._parse(reply.data) if reply.ok else None
        if facts is None:
            reason = reply.error if reply.status is not ReplyStatus.OK else "unexpected shape"
            log.warning("fact extraction fell back to heuristics: %s (%s)", reply.status.value, reason)
            return list(self.fallback.extract(messages))[: self.max_facts]

        return facts[: self.max_facts]

    def _parse(self, data: Any) -> Optional[List[ExtractedFact]]:
        rows = data.get("facts") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            return None

        out: List[ExtractedFact] = []
        for row in rows:
            if not isinstance(row, dict) or not isinstance(row.get("fact"), str):
                continue
            content = sanitize_storage_content(row["fact"]).strip()
            if not content:
                continue
            label = str(row.get("importance") or "medium").strip().lower()
            out.append(
                ExtractedFact(
                    content=content,
                    importance=IMPORTANCE_WEIGHTS.get(label, IMPORTANCE_WEIGHTS["medium"]),
                    source="llm",
                )
            )
            if len(out) >= self.max_facts:
                break
        return out
