from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from memory_engine.domain.errors import ProviderError, StorageError
from memory_engine.domain.memory_models import ConsolidationDecision, ExtractedFact, MemoryItem, Operation
from memory_engine.domain.text import normalize_for_compare, quote_for_prompt, sanitize_storage_content
from memory_engine.ports.llm import LLMClient
from memory_engine.ports.memory_store import VectorMemoryStore
from memory_engine.use_cases.structured import request_json

log = logging.getLogger(__name__)

MIN_FACT_CHARS = 5

DECISION_PROMPT = """Memory management decision.

Existing memories:
{candidates}

New fact: "{fact}"

Operations:
- ADD: Completely new information
- UPDATE <id>: Update/replace existing (provide merged content)
- DELETE <id>: Contradicts existing (provide new content)
- NOOP: Already captured

JSON format: {{"operation": "UPDATE", "memory_id": "abc123", "content": "merged", "reason": "..."}}
For ADD/NOOP, omit memory_id. For UPDATE, MUST provide merged content.
"""

Candidates = List[Tuple[MemoryItem, float]]


def _clamp_importance(value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.5
    if not math.isfinite(v):
        return 0.5
    return min(1.0, max(0.0, v))


def validate_target(decision: ConsolidationDecision, candidates: Candidates) -> ConsolidationDecision:
    """
    UPDATE/DELETE допустимы только по id из кандидатов, показанных модели.
    Иначе -> ADD. Единственное место, где проверяется memory_id.
    """
    if decision.operation not in (Operation.UPDATE, Operation.DELETE):
        decision.memory_id = None
        return decision

    if not decision.memory_id:
        decision.operation = Operation.ADD
        decision.reason = "Missing memory_id"
        return decision

    hit = next(((it, s) for it, s in candidates if it.id == decision.memory_id), None)
    if hit is None:
        log.warning("model referenced unknown memory_id=%s, downgrading to ADD", decision.memory_id)
        decision.operation = Operation.ADD
        decision.memory_id = None
        decision.old_content = None
        decision.reason = "Invalid memory_id"
        return decision

    item, score = hit
    decision.old_content = item.content
    decision.similarity = score
    return decision


class MemoryConsolidator:
    """
    Каждый ExtractedFact -> не более одной мутации хранилища.
    Сбой модели/парсинга -> ADD (fail-open), id от модели сверяется с кандидатами.
    """

    def __init__(
        self,
        store: VectorMemoryStore,
        llm: LLMClient,
        *,
        model: Optional[str] = None,
        candidate_threshold: float = 0.5,
        min_score_floor: float = 0.3,
        candidate_limit: int = 3,
        max_output_tokens: int = 500,
    ):
        self.store = store
        self.llm = llm
        self.model = model
        self.candidate_threshold = candidate_threshold
        self.min_score_floor = min_score_floor
        self.candidate_limit = candidate_limit
        self.max_output_tokens = max_output_tokens

    def consolidate(self, facts: Sequence[ExtractedFact], namespace: str) -> List[ConsolidationDecision]:
        results: List[ConsolidationDecision] = []
        for fact in facts:
            content = (fact.content or "").strip()
            if len(content) < MIN_FACT_CHARS:
                continue

            decision, valid_ids = self.decide(content, namespace)
            results.append(decision)

            try:
                self.execute(decision, namespace, _clamp_importance(fact.importance), valid_ids)
            except (ProviderError, StorageError, ValueError) as e:
                log.warning("failed to apply %s for fact from %s: %s", decision.operation.value, fact.source, e)
                decision.meta["applied"] = False
            else:
                decision.meta["applied"] = True
                log.debug("memory operation %s applied (source=%s)", decision.operation.value, fact.source)
        return results

    def decide(self, fact: str, namespace: str) -> Tuple[ConsolidationDecision, Set[str]]:
        try:
            candidates = self.store.search(
                fact,
                self.candidate_limit,
                self.candidate_threshold,
                namespace,
                self.min_score_floor,
            )
        except ProviderError as e:
            log.warning("candidate search failed: %s", e)
            return ConsolidationDecision(Operation.ADD, new_content=fact, reason="Search failed"), set()

        valid_ids = {it.id for it, _ in candidates}
        if not candidates:
            return (
                ConsolidationDecision(Operation.ADD, new_content=fact, reason="No similar memories found"),
                valid_ids,
            )

        wanted = normalize_for_compare(sanitize_storage_content(fact))
        for it, score in candidates:
            if normalize_for_compare(it.content) == wanted:
                return (
                    ConsolidationDecision(
                        Operation.NOOP,
                        new_content=fact,
                        old_content=it.content,
                        similarity=score,
                        reason="Already stored",
                    ),
                    valid_ids,
                )

        return validate_target(self._ask_model(fact, candidates), candidates), valid_ids

    def _ask_model(self, fact: str, candidates: Candidates) -> ConsolidationDecision:
        lines = [
            f'{i}. [id: {it.id}] "{quote_for_prompt(it.content)}" (similarity: {score:.2f})'
            for i, (it, score) in enumerate(candidates, start=1)
        ]
        prompt = DECISION_PROMPT.format(candidates="\n".join(lines), fact=quote_for_prompt(fact))
        top = candidates[0][1]

        reply = request_json(
            self.llm,
            prompt,
            max_output_tokens=self.max_output_tokens,
            temperature=0.0,
            model=self.model,
        )
        data: Any = reply.data
        if not reply.ok or not isinstance(data, dict) or "operation" not in data:
            log.warning("consolidation decision failed: %s %s", reply.status.value, reply.error)
            return ConsolidationDecision(Operation.ADD, new_content=fact, similarity=top, reason="LLM failed")

        content = data.get("content")
        memory_id = data.get("memory_id")
        reason = data.get("reason")
        return ConsolidationDecision(
            operation=Operation.parse(data.get("operation")),
            memory_id=str(memory_id).strip() if memory_id not in (None, "") else None,
            new_content=str(content).strip() if isinstance(content, str) and content.strip() else fact,
            similarity=top,
            reason=str(reason) if reason else "LLM decision",
        )

    def execute(
        self,
        decision: ConsolidationDecision,
        namespace: str,
        importance: float,
        valid_ids: Set[str],
    ) -> None:
        meta: Dict[str, Any] = {"importance": importance}
        op = decision.operation

        if op is Operation.ADD:
            if decision.new_content:
                decision.meta["stored_id"] = self.store.add(
                    sanitize_storage_content(decision.new_content), meta, namespace
                )
            return

        if op is Operation.UPDATE:
            if not decision.memory_id or not decision.new_content or decision.memory_id not in valid_ids:
                return
            content = sanitize_storage_content(decision.new_content)
            updated = self.store.update(decision.memory_id, content, meta, namespace)
            if updated is None:
                log.info("update target %s vanished, adding instead", decision.memory_id)
                decision.meta["stored_id"] = self.store.add(content, meta, namespace)
            return

        if op is Operation.DELETE:
            if not decision.memory_id or decision.memory_id not in valid_ids:
                return
            self.store.delete(decision.memory_id, namespace)
            if not decision.new_content:
                return
            content = sanitize_storage_content(decision.new_content)
            if content != decision.old_content:
                decision.meta["stored_id"] = self.store.add(content, meta, namespace)
            return
