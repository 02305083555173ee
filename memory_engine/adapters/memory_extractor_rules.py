from __future__ import annotations

import re
from typing import List, Sequence, Set, Tuple

from memory_engine.domain.memory_models import ExtractedFact
from memory_engine.domain.models import Message
from memory_engine.ports.memory_extractor import FactExtractor

# индикатор -> вес важности; порядок значим
FACT_INDICATORS: List[Tuple[re.Pattern[str], float]] = [
    (re.compile(r"\bmy\s+name\s+is\b", re.IGNORECASE), 0.9),
    (re.compile(r"\bi\s+am\s+an?\b", re.IGNORECASE), 0.7),
    (re.compile(r"\bi\s+work\b", re.IGNORECASE), 0.8),
    (re.compile(r"\bi\s+live\b", re.IGNORECASE), 0.8),
    (re.compile(r"\bi\s+prefer\b", re.IGNORECASE), 0.7),
    (re.compile(r"\bi\s+like\b", re.IGNORECASE), 0.6),
    (re.compile(r"\bi\s+use\b", re.IGNORECASE), 0.6),
    (re.compile(r"\bcall\s+me\b", re.IGNORECASE), 0.8),
]

THIRD_PERSON_RULES: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bmy\b", re.IGNORECASE), "User's"),
    (re.compile(r"\bi am\b", re.IGNORECASE), "User is"),
    (re.compile(r"\bi'm\b", re.IGNORECASE), "User is"),
    (re.compile(r"\bi have\b", re.IGNORECASE), "User has"),
    (re.compile(r"\bi've\b", re.IGNORECASE), "User has"),
    (re.compile(r"\bi will\b", re.IGNORECASE), "User will"),
    (re.compile(r"\bi'll\b", re.IGNORECASE), "User will"),
    (re.compile(r"\bi\b", re.IGNORECASE), "User"),
    (re.compile(r"\bUser User\b"), "User"),
]

# общее семейство ключевых слов для построчного скана (компактор)
FACT_KEYWORDS: Tuple[str, ...] = (
    "my name is",
    "i am",
    "i'm",
    "i work",
    "i live",
    "i prefer",
    "remember that",
    "note that",
    "important:",
    "email:",
    "phone:",
    "address:",
    "birthday:",
    "project uses",
    "using",
    "configured to",
)

RE_SENTENCE_END = re.compile(r"[.!?\n]")

MIN_FACT_CHARS = 5
MIN_LINE_CHARS = 10
MAX_LINE_CHARS = 200


def to_third_person(text: str) -> str:
    out = text
    for rx, repl in THIRD_PERSON_RULES:
        out = rx.sub(repl, out)
    return out


def _capitalize(s: str) -> str:
    return s[:1].upper() + s[1:] if s else s


def scan_fact_lines(messages: Sequence[Message], max_facts: int) -> List[str]:
    """Строки с ключевыми словами из не-системных сообщений, без повторов."""
    facts: List[str] = []
    seen: Set[str] = set()
    if max_facts <= 0:
        return facts

    for msg in messages:
        if msg.role == "system":
            continue
        for line in (msg.content or "").splitlines():
            line = line.strip()
            if len(line) < MIN_LINE_CHARS:
                continue
            low = line.lower()
            if not any(kw in low for kw in FACT_KEYWORDS):
                continue
            fact = line[:MAX_LINE_CHARS]
            if fact in seen:
                continue
            seen.add(fact)
            facts.append(fact)
            if len(facts) >= max_facts:
                return facts
    return facts


class HeuristicFactExtractor(FactExtractor):
    """
    Запасной путь без модели: только реплики пользователя,
    фраза от индикатора до конца предложения -> третье лицо.
    """

    def extract(self, messages: Sequence[Message]) -> List[ExtractedFact]:
        out: List[ExtractedFact] = []
        seen: Set[str] = set()

        for msg in messages:
            if msg.role != "user":
                continue
            text = msg.content or ""
            for rx, importance in FACT_INDICATORS:
                m = rx.search(text)
                if not m:
                    continue
                start = m.start()
                end_m = RE_SENTENCE_END.search(text, start)
                end = end_m.start() if end_m else len(text)
                fact_text = text[start:end].strip()
                if len(fact_text) <= MIN_FACT_CHARS:
                    continue
                fact = _capitalize(to_third_person(fact_text))
                if fact in seen:
                    continue
                seen.add(fact)
                out.append(ExtractedFact(content=fact, importance=importance, source="heuristic"))

        return out
