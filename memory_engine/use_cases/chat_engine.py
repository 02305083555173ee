from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from memory_engine.domain.errors import ProviderError, StorageError
from memory_engine.domain.models import Message, turn
from memory_engine.ports.augment import ContextAugmentor
from memory_engine.ports.llm import LLMClient
from memory_engine.ports.repo import ConversationRepo
from memory_engine.use_cases.memory_pipeline import MemoryPipeline

log = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, I encountered an error: {err}"


@dataclass
class ChatEngine:
    repo: ConversationRepo
    llm: LLMClient
    memory: MemoryPipeline
    augmentors: List[ContextAugmentor] = field(default_factory=list)
    system_prompt: str = "You are a helpful personal assistant."
    max_output_tokens: int = 1024

    _locks: Dict[str, Lock] = field(default_factory=dict, init=False, repr=False)
    _locks_guard: Lock = field(default_factory=Lock, init=False, repr=False)

    def session_lock(self, conversation_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = Lock()
                self._locks[conversation_id] = lock
            return lock

    def handle_user_message(
        self,
        conversation_id: str,
        user_text: str,
        session_metadata: Optional[Mapping[str, object]] = None,
    ) -> str:
        text, _meta = self.handle_user_message_ex(conversation_id, user_text, session_metadata)
        return text

    def handle_user_message_ex(
        self,
        conversation_id: str,
        user_text: str,
        session_metadata: Optional[Mapping[str, object]] = None,
    ) -> tuple[str, Dict[str, Any]]:
        meta: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "compaction": {"applied": False, "stored": 0, "sent": 0},
            "recall": {"inserted": False, "ids": []},
            "memory": {"ops": []},
            "error": None,
        }

        # от сборки промпта до записи истории держим лок сессии
        with self.session_lock(conversation_id):
            convo = self.repo.load(conversation_id)

            prompt = self.memory.compose_prompt_context(
                user_text,
                session_metadata if session_metadata is not None else {"session": conversation_id},
            )
            sent_history, compacted = self.memory.compact(convo.messages)
            meta["compaction"] = {
                "applied": compacted,
                "stored": len(convo.messages),
                "sent": len(sent_history),
            }

            context: List[Message] = [turn("system", self.system_prompt, pinned=True)]
            context.extend(sent_history)
            context.append(turn("user", prompt, query=user_text))
            for aug in self.augmentors:
                context = aug.augment(convo, context)

            recall = next((m for m in context if m.meta.get("type") == "vector_recall"), None)
            if recall is not None:
                meta["recall"] = {"inserted": True, "ids": list(recall.meta.get("ids", []))}

            try:
                resp = self.llm.generate(context, max_output_tokens=self.max_output_tokens)
            except ProviderError as e:
                log.warning("completion error: conversation=%s err=%s", conversation_id, e)
                meta["error"] = str(e)
                return ERROR_REPLY.format(err=e), meta

            # в историю кладём исходный текст, без заметок и контекста
            if user_text.strip():
                convo.messages.append(turn("user", user_text))
            if resp.text.strip():
                convo.messages.append(turn("assistant", resp.text, usage=dict(resp.usage)))

            try:
                self.repo.save(convo)
            except StorageError as e:
                log.warning("history not persisted: %s", e)
                meta["error"] = str(e)

            decisions = self.memory.maybe_extract_and_consolidate(convo.messages, conversation_id)
            meta["memory"]["ops"] = [d.operation.value for d in decisions]
            meta["llm_usage"] = dict(resp.usage)

        log.info(json.dumps({"event": "chat", **meta}, ensure_ascii=False, default=str))
        return resp.text, meta
