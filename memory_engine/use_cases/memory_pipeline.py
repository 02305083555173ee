from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple

from memory_engine.domain.memory_models import ConsolidationDecision
from memory_engine.domain.models import Message
from memory_engine.ports.memory_extractor import FactExtractor
from memory_engine.ports.notes import NotesStore
from memory_engine.use_cases.consolidator import MemoryConsolidator
from memory_engine.use_cases.session_compactor import SessionCompactor

log = logging.getLogger(__name__)

DEFAULT_NOTES_MAX_CHARS = 8000


@dataclass
class MemoryPipeline:
    """
    То, что память отдаёт остальному ассистенту:
    - compose_prompt_context: заметки из файлов + текст пользователя
    - compact: ограниченная копия истории для модели
    - maybe_extract_and_consolidate: каждые N реплик пользователя, best-effort
    """

    notes: NotesStore
    compactor: SessionCompactor = field(default_factory=SessionCompactor)
    extractor: Optional[FactExtractor] = None
    consolidator: Optional[MemoryConsolidator] = None
    extraction_interval: int = 5
    notes_max_chars: int = DEFAULT_NOTES_MAX_CHARS
    notes_enabled: bool = True

    def compose_prompt_context(self, user_text: str, session_metadata: Optional[Mapping[str, object]] = None) -> str:
        ctx_lines = ["[Conversation context]"]
        for k, v in (session_metadata or {}).items():
            ctx_lines.append(f"{k}: {v}")
        context = "\n".join(ctx_lines)

        notes = ""
        if self.notes_enabled:
            notes = self.notes.get_memory_context(self.notes_max_chars)

        if not notes:
            return f"{context}\n\n[User message]\n{user_text}"
        return f"{context}\n\n[Notes from memory]\n{notes}\n\n[User message]\n{user_text}"

    def compact(self, history: Sequence[Message]) -> Tuple[List[Message], bool]:
        return self.compactor.compact(history)

    def should_extract(self, history: Sequence[Message]) -> bool:
        if self.extractor is None or self.consolidator is None or self.extraction_interval <= 0:
            return False
        user_count = sum(1 for m in history if m.role == "user")
        return user_count > 0 and user_count % self.extraction_interval == 0

    def maybe_extract_and_consolidate(self, history: Sequence[Message], namespace: str) -> List[ConsolidationDecision]:
        if not self.should_extract(history):
            return []
        assert self.extractor is not None and self.consolidator is not None

        try:
            facts = self.extractor.extract(list(history))
            if not facts:
                return []
            decisions = self.consolidator.consolidate(facts, namespace)
        except Exception:
            # память не должна ронять ход диалога
            log.exception("memory extraction/consolidation failed for namespace=%s", namespace)
            return []

        log.info(
            "memory consolidated ns=%s facts=%d ops=%s",
            namespace,
            len(facts),
            ",".join(d.operation.value for d in decisions),
        )
        return decisions
