from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from memory_engine.adapters.memory_extractor_rules import scan_fact_lines
from memory_engine.domain.models import Message, turn

log = logging.getLogger(__name__)

RECALL_HEADER = "[Recalling from earlier in our conversation]"
EMPTY_SUMMARY = "General discussion continued"

MIN_QUESTION_LENGTH = 20
MIN_CONTENT_LENGTH = 50
MIN_SENTENCE_LENGTH = 30
MAX_EXTRACT_LENGTH = 150
MAX_SUMMARY_ITEMS = 3


@dataclass(frozen=True)
class CompactionConfig:
    threshold: int = 50
    recent_turns_keep: int = 8
    summary_max_turns: int = 15
    max_facts: int = 10


class SessionCompactor:
    """
    Ограничивает историю, уходящую в модель:
    old -> ключевые факты, middle -> эвристическая сводка, recent -> как есть.
    Возвращает новую последовательность, исходную не трогает.
    """

    def __init__(self, config: CompactionConfig | None = None):
        self.config = config or CompactionConfig()

    def compact(self, messages: Sequence[Message]) -> Tuple[List[Message], bool]:
        history = list(messages)
        if len(history) < self.config.threshold:
            log.debug("skipping compaction: %d < %d", len(history), self.config.threshold)
            return history, False

        recent_start = max(0, len(history) - self.config.recent_turns_keep * 2)
        middle_start = max(0, recent_start - self.config.summary_max_turns * 2)
        old = history[:middle_start]
        middle = history[middle_start:recent_start]
        recent = history[recent_start:]

        recall_parts: List[str] = []
        if old:
            facts = scan_fact_lines(old, self.config.max_facts)
            if facts:
                recall_parts.append("Key facts:\n" + "\n".join(f"- {f}" for f in facts))
        if middle:
            recall_parts.append("Recent discussion summary:\n" + summarize_turns(middle))

        out: List[Message] = []
        if recall_parts:
            recall = RECALL_HEADER + "\n\n" + "\n\n".join(recall_parts)
            out.append(turn("assistant", recall, type="compaction_recap"))
        out.extend(recent)
        return out, True


def _distinct_append(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


def summarize_turns(messages: Sequence[Message]) -> str:
    questions: List[str] = []
    conclusions: List[str] = []

    for m in messages:
        content = (m.content or "").strip()
        if not content:
            continue
        if m.role == "user":
            for line in content.splitlines():
                line = line.strip()
                if line.endswith("?") and len(line) > MIN_QUESTION_LENGTH:
                    _distinct_append(questions, line[:MAX_EXTRACT_LENGTH])
        elif m.role == "assistant" and len(content) > MIN_CONTENT_LENGTH:
            for sentence in content.split(".")[:3]:
                sentence = sentence.strip()
                if len(sentence) > MIN_SENTENCE_LENGTH:
                    _distinct_append(conclusions, sentence[:MAX_EXTRACT_LENGTH])
                    break

    parts: List[str] = []
    if questions:
        parts.append("User asked about:")
        parts.extend(f"  - {q}" for q in questions[:MAX_SUMMARY_ITEMS])
    if conclusions:
        parts.append("Assistant responses:")
        parts.extend(f"  - {c}" for c in conclusions[:MAX_SUMMARY_ITEMS])
    return "\n".join(parts) if parts else EMPTY_SUMMARY
