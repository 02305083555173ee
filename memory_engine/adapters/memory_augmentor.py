from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from memory_engine.domain.errors import ProviderError
from memory_engine.domain.models import Conversation, Message, new_id
from memory_engine.ports.augment import ContextAugmentor
from memory_engine.ports.memory_store import VectorMemoryStore
from memory_engine.ports.tokens import TokenCounter

log = logging.getLogger(__name__)

RECALL_HEADER = "Relevant memories about the user (may be outdated):"


def _is_recall(m: Message) -> bool:
    return m.role == "system" and m.meta.get("type") == "vector_recall"


@dataclass
class RecallAugmentor(ContextAugmentor):
    """
    Подмешивает top-k записей векторной памяти под последнюю реплику пользователя
    (meta["query"], если промпт обёрнут контекстом). namespace=None -> id диалога.
    Вставляется после закреплённых (pinned) сообщений. Сбой поиска -> без recall.
    """

    store: VectorMemoryStore
    counter: TokenCounter
    namespace: Optional[str] = None
    top_k: int = 5
    threshold: float = 0.3
    max_tokens: int = 300

    def augment(self, convo: Conversation, draft_context: Sequence[Message]) -> List[Message]:
        base = [m for m in draft_context if not _is_recall(m)]
        last_user: Optional[Message] = next((m for m in reversed(base) if m.role == "user"), None)
        if last_user is None:
            return base
        # пустой текст пользователя не подменяется собранным промптом
        raw = last_user.meta["query"] if "query" in last_user.meta else last_user.content
        query = str(raw or "")
        if not query.strip():
            return base

        namespace = self.namespace or convo.conversation_id
        try:
            hits = self.store.search(query, self.top_k, self.threshold, namespace)
        except ProviderError as e:
            log.warning("recall skipped: %s", e)
            return base
        if not hits:
            return base

        lines: List[str] = [RECALL_HEADER]
        chosen: List[str] = []
        for item, _score in hits:
            trial = "\n".join(lines + [f"- {item.content}"])
            if self.counter.count_messages([Message(id="probe", role="system", content=trial)]) > self.max_tokens:
                break
            lines.append(f"- {item.content}")
            chosen.append(item.id)

        if not chosen:
            return base

        recall_msg = Message(
            id=new_id(),
            role="system",
            content="\n".join(lines),
            created_at=last_user.created_at,
            meta={"type": "vector_recall", "pinned": True, "ids": chosen},
        )
        recall_msg.meta["tokens"] = self.counter.count_messages([recall_msg])

        insert_at = 0
        for i, m in enumerate(base):
            if m.meta.get("pinned") is True:
                insert_at = i + 1

        return base[:insert_at] + [recall_msg] + base[insert_at:]
