import json
import tempfile
import threading

import pytest

from memory_engine.adapters import vector_store_json
from memory_engine.adapters.embed_hash import HashingEmbedder
from memory_engine.adapters.vector_store_json import JsonVectorMemoryStore, cosine
from memory_engine.domain.errors import ProviderError, StorageError


class FailingEmbedder:
    dim = 8

    def embed(self, texts):
        raise ProviderError("embedding service down")


def _store(d, **kw):
    return JsonVectorMemoryStore(f"{d}/vectors.default.json", HashingEmbedder(), **kw)


def test_add_search_roundtrip_and_persistence():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        item_id = store.add("User prefers dark roast coffee", {"importance": 0.7}, "s1")

        hits = store.search("User prefers dark roast coffee", 3, 0.5, "s1")
        assert hits and hits[0][0].id == item_id
        assert hits[0][1] == pytest.approx(1.0, abs=1e-6)

        # новый экземпляр читает тот же файл
        again = _store(d)
        assert again.get(item_id, "s1").content == "User prefers dark roast coffee"
        assert again.count() == 1


def test_search_never_exceeds_k_and_respects_threshold():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        for text in [
            "User likes green tea",
            "User likes black tea",
            "User likes herbal tea in the evening",
            "User drives a blue car",
            "Project uses PostgreSQL",
        ]:
            store.add(text, None, "s1")

        for k in (0, 1, 2, 10):
            for threshold in (0.0, 0.2, 0.6):
                hits = store.search("User likes tea", k, threshold, "s1")
                assert len(hits) <= max(k, 0)
                assert all(score >= threshold for _, score in hits)
                scores = [s for _, s in hits]
                assert scores == sorted(scores, reverse=True)


def test_score_floor_raises_effective_cutoff():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        store.add("User likes green tea", None, "s1")
        assert store.search("completely unrelated words here", 5, 0.0, "s1", min_score_floor=0.99) == []


def test_namespaces_are_isolated():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        a = store.add("User's name is Alice", None, "s1")
        store.add("User's name is Alice", None, "s2")

        assert [it.id for it, _ in store.search("User's name is Alice", 5, 0.0, "s1")] == [a]
        assert store.count("s1") == 1
        assert store.count() == 2
        assert store.delete(a, "s2") is False
        assert store.delete(a, "s1") is True
        assert store.delete(a, "s1") is False


def test_content_is_sanitized_and_blank_rejected():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        item_id = store.add("User <b>likes</b>\x07 tea\n", None, None)
        item = store.get(item_id)
        assert item.namespace == "default"
        assert "<" not in item.content and "\x07" not in item.content
        assert "&lt;b&gt;" in item.content

        with pytest.raises(ValueError):
            store.add("   ", None, "s1")


def test_update_merges_metadata_and_missing_id_returns_none():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        item_id = store.add("User lives in Berlin", {"importance": 0.8, "source": "llm"}, "s1")

        updated = store.update(item_id, "User lives in Munich", {"importance": 0.9}, "s1")
        assert updated is not None
        assert updated.content == "User lives in Munich"
        assert updated.metadata == {"importance": 0.9, "source": "llm"}
        assert updated.updated_at >= updated.created_at

        assert store.update("nope", "whatever text", None, "s1") is None
        assert store.update(item_id, "User lives in Hamburg", None, "s2") is None


def test_eviction_prefers_lowest_importance_then_oldest():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d, max_memories=2)
        low_old = store.add("User fact one about apples", {"importance": 0.5}, "s1")
        high = store.add("User fact two about bananas", {"importance": 0.9}, "s1")
        low_new = store.add("User fact three about cherries", {"importance": 0.5}, "s1")

        ids = {it.id for it in store.list_items("s1")}
        assert ids == {high, low_new}
        assert low_old not in ids

        # в другом namespace лимит свой
        store.add("Other namespace fact", {"importance": 0.1}, "s2")
        assert store.count("s1") == 2
        assert store.count("s2") == 1


def test_embedding_failure_leaves_store_unchanged():
    with tempfile.TemporaryDirectory() as d:
        store = JsonVectorMemoryStore(f"{d}/v.json", FailingEmbedder())
        with pytest.raises(ProviderError):
            store.add("User likes tea", None, "s1")
        assert store.count() == 0
        assert store.search("", 3) == []


def test_storage_failure_leaves_no_partial_state(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        kept = store.add("User likes green tea", None, "s1")

        def broken_write(path, text):
            raise OSError("disk full")

        monkeypatch.setattr(vector_store_json, "_atomic_write", broken_write)

        with pytest.raises(StorageError):
            store.add("User likes black coffee", None, "s1")
        with pytest.raises(StorageError):
            store.delete(kept, "s1")

        assert [it.id for it in store.list_items("s1")] == [kept]

        monkeypatch.undo()
        reloaded = _store(d)
        assert [it.id for it in reloaded.list_items("s1")] == [kept]


def test_corrupt_file_is_moved_aside():
    with tempfile.TemporaryDirectory() as d:
        path = f"{d}/vectors.default.json"
        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")

        store = JsonVectorMemoryStore(path, HashingEmbedder())
        assert store.count() == 0

        with open(path + ".bad", encoding="utf-8") as f:
            assert f.read() == "{not json"

        store.add("User likes tea", None, "s1")
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        assert data["version"] == 1
        assert len(data["items"]) == 1


def test_cosine_edge_cases():
    assert cosine([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_concurrent_writes_lose_nothing():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        seeded = [store.add(f"User seed fact number {i}", None, "s1") for i in range(10)]

        def add(i):
            store.add(f"User concurrent fact number {i}", None, "s1")

        threads = [threading.Thread(target=add, args=(i,)) for i in range(40)]
        threads += [
            threading.Thread(target=store.update, args=(seeded[i], f"User updated fact number {i}", None, "s1"))
            for i in range(5)
        ]
        threads += [threading.Thread(target=store.delete, args=(seeded[i], "s1")) for i in range(5, 10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.count("s1") == 45
        again = _store(d)
        assert again.count("s1") == 45
        contents = {it.content for it in again.list_items("s1")}
        assert {f"User concurrent fact number {i}" for i in range(40)} <= contents
        assert {f"User updated fact number {i}" for i in range(5)} <= contents


def test_forty_threaded_adds_all_persist():
    with tempfile.TemporaryDirectory() as d:
        store = _store(d)
        threads = [
            threading.Thread(target=store.add, args=(f"User remembers item {i}", None, "s1"))
            for i in range(40)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.count("s1") == 40
        assert _store(d).count("s1") == 40
