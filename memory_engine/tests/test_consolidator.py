import json
import tempfile

from memory_engine.adapters.embed_hash import HashingEmbedder
from memory_engine.adapters.llm_mock import ScriptedMockLLM
from memory_engine.adapters.vector_store_json import JsonVectorMemoryStore
from memory_engine.domain.errors import ProviderError
from memory_engine.domain.memory_models import ConsolidationDecision, ExtractedFact, Operation
from memory_engine.use_cases.consolidator import MemoryConsolidator, validate_target

DECISION_KEY = "memory management decision"


class FailingEmbedder:
    dim = 8

    def embed(self, texts):
        raise ProviderError("embedding service down")


class CrashingEmbedder:
    dim = 8

    def embed(self, texts):
        raise RuntimeError("model crashed")


class TargetRemovingLLM:
    """Удаляет цель до ответа модели: запись исчезает между проверкой id и записью."""

    def __init__(self, inner, store, target_id, namespace):
        self.inner = inner
        self.store = store
        self.target_id = target_id
        self.namespace = namespace

    def generate(self, *args, **kwargs):
        self.store.delete(self.target_id, self.namespace)
        return self.inner.generate(*args, **kwargs)


def _store(d):
    return JsonVectorMemoryStore(f"{d}/vectors.default.json", HashingEmbedder())


def _fact(text, importance=0.9):
    return ExtractedFact(content=text, importance=importance, source="llm")


def test_update_replaces_existing_memory():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        old_id = store.add("User's name is Alice", {"importance": 0.9}, "s1")

        llm = ScriptedMockLLM(rules={
            DECISION_KEY: json.dumps({
                "operation": "UPDATE",
                "memory_id": old_id,
                "content": "User's name is Alice Smith",
                "reason": "more specific",
            })
        })
        cons = MemoryConsolidator(store, llm)

        [decision] = cons.consolidate([_fact("User's name is Alice Smith")], "s1")

        assert decision.operation is Operation.UPDATE
        assert decision.memory_id == old_id
        assert decision.old_content == "User's name is Alice"
        assert decision.new_content == "User's name is Alice Smith"
        assert decision.similarity is not None and decision.similarity >= 0.5
        assert decision.meta["applied"] is True

        assert store.count("s1") == 1
        assert store.get(old_id, "s1").content == "User's name is Alice Smith"

        # кандидаты попали в промпт с id
        assert old_id in llm.calls[0]["prompt"]


def test_unknown_memory_id_is_downgraded_to_add():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        old_id = store.add("User's name is Alice", None, "s1")
        other_ns = store.add("User's name is Alice", None, "s2")

        llm = ScriptedMockLLM(rules={
            DECISION_KEY: json.dumps({"operation": "DELETE", "memory_id": other_ns, "content": "x"})
        })
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User's name is Alice Smith")], "s1")

        assert decision.operation is Operation.ADD
        assert decision.reason == "Invalid memory_id"
        assert decision.memory_id is None
        assert store.get(old_id, "s1").content == "User's name is Alice"
        assert store.get(other_ns, "s2") is not None
        assert store.count("s1") == 2


def test_llm_failure_fails_open_to_add():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User's name is Alice", None, "s1")

        [decision] = MemoryConsolidator(store, ScriptedMockLLM(default=None)).consolidate(
            [_fact("User's name is Alice Smith")], "s1"
        )
        assert decision.operation is Operation.ADD
        assert decision.reason == "LLM failed"
        assert store.count("s1") == 2


def test_unparsable_decision_fails_open_to_add():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User's name is Alice", None, "s1")

        llm = ScriptedMockLLM(rules={DECISION_KEY: "I think you should update it."})
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User's name is Alice Smith")], "s1")
        assert decision.operation is Operation.ADD
        assert store.count("s1") == 2


def test_same_fact_twice_is_add_then_noop():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        llm = ScriptedMockLLM(default=None)
        cons = MemoryConsolidator(store, llm)

        [first] = cons.consolidate([_fact("User prefers dark mode")], "s1")
        [second] = cons.consolidate([_fact("User prefers dark mode")], "s1")

        assert first.operation is Operation.ADD
        assert first.reason == "No similar memories found"
        assert second.operation is Operation.NOOP
        assert store.count("s1") == 1
        assert llm.calls == []


def test_delete_replaces_contradicted_memory():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        old_id = store.add("User lives in Berlin", None, "s1")

        llm = ScriptedMockLLM(rules={
            DECISION_KEY: json.dumps({
                "operation": "DELETE",
                "memory_id": old_id,
                "content": "User lives in Munich",
                "reason": "moved",
            })
        })
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User lives in Munich", 0.7)], "s1")

        assert decision.operation is Operation.DELETE
        assert decision.old_content == "User lives in Berlin"
        assert store.get(old_id, "s1") is None
        [item] = store.list_items("s1")
        assert item.content == "User lives in Munich"
        assert item.id == decision.meta["stored_id"]
        assert item.importance == 0.7


def test_noop_from_model_changes_nothing():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User lives in Berlin", None, "s1")

        llm = ScriptedMockLLM(rules={DECISION_KEY: '{"operation": "NOOP", "memory_id": "whatever"}'})
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User lives in Berlin, Germany")], "s1")

        assert decision.operation is Operation.NOOP
        assert decision.memory_id is None
        assert store.count("s1") == 1


def test_short_facts_are_skipped_and_importance_clamped():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        cons = MemoryConsolidator(store, ScriptedMockLLM(default=None))

        decisions = cons.consolidate([_fact("hi"), _fact("User enjoys long hikes", importance=7.0)], "s1")
        assert len(decisions) == 1
        [item] = store.list_items("s1")
        assert item.importance == 1.0


def test_search_failure_is_add_and_batch_continues():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User enjoys short walks", None, "s1")
        store.embedder = FailingEmbedder()
        cons = MemoryConsolidator(store, ScriptedMockLLM(default=None))

        decisions = cons.consolidate([_fact("User enjoys long hikes"), _fact("User owns a red bicycle")], "s1")
        assert [x.operation for x in decisions] == [Operation.ADD, Operation.ADD]
        assert all(x.reason == "Search failed" for x in decisions)
        assert all(x.meta["applied"] is False for x in decisions)
        assert store.count() == 1


def test_validate_target_requires_id_for_update():
    decision = ConsolidationDecision(Operation.UPDATE, new_content="User likes tea")
    out = validate_target(decision, [])
    assert out.operation is Operation.ADD
    assert out.reason == "Missing memory_id"


def test_embedder_crash_is_contained_and_batch_continues():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User enjoys short walks", None, "s1")
        store.embedder = CrashingEmbedder()
        cons = MemoryConsolidator(store, ScriptedMockLLM(default=None))

        decisions = cons.consolidate([_fact("User owns a red bicycle"), _fact("User drinks green tea daily")], "s1")
        assert len(decisions) == 2
        assert all(x.operation is Operation.ADD for x in decisions)
        assert all(x.reason == "Search failed" for x in decisions)
        assert all(x.meta["applied"] is False for x in decisions)
        assert store.count("s1") == 1


def test_update_of_vanished_memory_adds_content():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        old_id = store.add("User's name is Alice", None, "s1")

        inner = ScriptedMockLLM(rules={
            DECISION_KEY: json.dumps({
                "operation": "UPDATE",
                "memory_id": old_id,
                "content": "User's name is Alice Smith",
            })
        })
        llm = TargetRemovingLLM(inner, store, old_id, "s1")
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User's name is Alice Smith")], "s1")

        assert decision.operation is Operation.UPDATE
        assert store.get(old_id, "s1") is None
        assert [it.content for it in store.list_items("s1")] == ["User's name is Alice Smith"]
        assert store.get(decision.meta["stored_id"], "s1") is not None


def test_delete_with_unchanged_content_does_not_readd():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        old_id = store.add("User lives in Berlin", None, "s1")

        llm = ScriptedMockLLM(rules={
            DECISION_KEY: json.dumps({
                "operation": "DELETE",
                "memory_id": old_id,
                "content": "User lives in Berlin",
            })
        })
        [decision] = MemoryConsolidator(store, llm).consolidate([_fact("User lives in Berlin, Germany")], "s1")

        assert decision.operation is Operation.DELETE
        assert "stored_id" not in decision.meta
        assert store.count("s1") == 0
