from __future__ import annotations

import json
import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence, Tuple

from memory_engine.domain.errors import ProviderError, StorageError
from memory_engine.domain.memory_models import MemoryItem
from memory_engine.domain.models import new_id, utcnow
from memory_engine.domain.text import sanitize_storage_content
from memory_engine.ports.embeddings import Embedder
from memory_engine.ports.memory_store import VectorMemoryStore

log = logging.getLogger(__name__)

FORMAT_VERSION = 1


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return dot / (na * nb)


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def _dt_from_iso(s: Any) -> datetime:
    s = str(s or "").strip()
    if not s:
        return utcnow()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return utcnow()
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _item_to_dict(it: MemoryItem) -> Dict[str, Any]:
    return {
        "id": it.id,
        "namespace": it.namespace,
        "content": it.content,
        "embedding": list(it.embedding),
        "metadata": it.metadata,
        "created_at": it.created_at.isoformat(),
        "updated_at": it.updated_at.isoformat(),
    }


def _item_from_dict(d: Dict[str, Any]) -> Optional[MemoryItem]:
    iid = str(d.get("id", "") or "")
    vec = d.get("embedding")
    if not iid or not isinstance(vec, list) or not vec:
        return None
    meta = d.get("metadata")
    return MemoryItem(
        id=iid,
        content=str(d.get("content", "")),
        embedding=[float(x) for x in vec],
        namespace=str(d.get("namespace", "") or ""),
        metadata=meta if isinstance(meta, dict) else {},
        created_at=_dt_from_iso(d.get("created_at")),
        updated_at=_dt_from_iso(d.get("updated_at")),
    )


class JsonVectorMemoryStore(VectorMemoryStore):
    """
    Файл JSON: { "version": 1, "items": [ {id, namespace, content, embedding, metadata, created_at, updated_at}, ... ] }

    - эмбеддинг считается ДО захвата лока; ошибка -> ProviderError, ничего не меняется
    - запись: новый список -> атомарная запись файла -> подмена self._items
    - читатели берут текущий список как снимок, без лока
    - лимит max_memories на namespace; вытесняется min importance, при равенстве самый старый
    """

    def __init__(
        self,
        path: str,
        embedder: Embedder,
        *,
        max_memories: int = 1000,
        default_namespace: str = "default",
    ):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.embedder = embedder
        self.max_memories = max(1, int(max_memories))
        self.default_namespace = default_namespace
        self._lock = RLock()
        self._items: Tuple[MemoryItem, ...] = ()
        self._load()

    def _ns(self, namespace: Optional[str]) -> str:
        ns = (namespace or "").strip()
        return ns or self.default_namespace

    def _load(self) -> None:
        if not self.path.exists():
            self._items = ()
            return
        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
            rows = data.get("items", []) if isinstance(data, dict) else []
            items = [_item_from_dict(r) for r in rows if isinstance(r, dict)]
            self._items = tuple(it for it in items if it is not None)
        except (OSError, ValueError) as e:
            log.warning("vector store %s unreadable (%s), starting empty", self.path, e)
            try:
                self.path.replace(self.path.with_suffix(self.path.suffix + ".bad"))
            except OSError:
                log.warning("could not move aside %s", self.path)
            self._items = ()

    def _commit(self, items: List[MemoryItem]) -> None:
        data = {"version": FORMAT_VERSION, "items": [_item_to_dict(it) for it in items]}
        try:
            _atomic_write(self.path, json.dumps(data, ensure_ascii=False, indent=2))
        except OSError as e:
            raise StorageError(f"failed to persist vector store {self.path}: {e}") from e
        self._items = tuple(items)

    def _embed_one(self, text: str) -> List[float]:
        try:
            vecs = self.embedder.embed([text])
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"embedding failed: {e}") from e
        if len(vecs) != 1 or not vecs[0]:
            raise ProviderError(f"embedder returned {len(vecs)} vectors for 1 text")
        return list(vecs[0])

    def _evict(self, items: List[MemoryItem], ns: str) -> List[MemoryItem]:
        in_ns = [it for it in items if it.namespace == ns]
        overflow = len(in_ns) - self.max_memories + 1
        if overflow <= 0:
            return items
        victims = sorted(in_ns, key=lambda it: (it.importance, it.created_at))[:overflow]
        drop = {it.id for it in victims}
        for it in victims:
            log.info("vector store evicting id=%s ns=%s importance=%.2f", it.id, ns, it.importance)
        return [it for it in items if it.id not in drop]

    def add(self, content: str, metadata: Optional[Dict[str, Any]] = None, namespace: Optional[str] = None) -> str:
        clean = sanitize_storage_content(content).strip()
        if not clean:
            raise ValueError("memory content is empty")
        ns = self._ns(namespace)
        vec = self._embed_one(clean)

        now = utcnow()
        item = MemoryItem(
            id=new_id(),
            content=clean,
            embedding=vec,
            namespace=ns,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            items = self._evict(list(self._items), ns)
            items.append(item)
            self._commit(items)
        return item.id

    def update(
        self,
        item_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        namespace: Optional[str] = None,
    ) -> Optional[MemoryItem]:
        clean = sanitize_storage_content(content).strip()
        if not clean:
            raise ValueError("memory content is empty")
        ns = self._ns(namespace)
        if self.get(item_id, ns) is None:
            return None
        vec = self._embed_one(clean)

        with self._lock:
            items = list(self._items)
            for i, it in enumerate(items):
                if it.id == item_id and it.namespace == ns:
                    meta = dict(it.metadata)
                    meta.update(metadata or {})
                    updated = replace(it, content=clean, embedding=vec, metadata=meta, updated_at=utcnow())
                    items[i] = updated
                    self._commit(items)
                    return updated
        # удалили между get и захватом лока
        return None

    def delete(self, item_id: str, namespace: Optional[str] = None) -> bool:
        ns = self._ns(namespace)
        with self._lock:
            items = [it for it in self._items if not (it.id == item_id and it.namespace == ns)]
            if len(items) == len(self._items):
                return False
            self._commit(items)
            return True

    def get(self, item_id: str, namespace: Optional[str] = None) -> Optional[MemoryItem]:
        ns = self._ns(namespace)
        return next((it for it in self._items if it.id == item_id and it.namespace == ns), None)

    def list_items(self, namespace: Optional[str] = None) -> List[MemoryItem]:
        ns = self._ns(namespace)
        return [it for it in self._items if it.namespace == ns]

    def count(self, namespace: Optional[str] = None) -> int:
        if namespace is None:
            return len(self._items)
        return len(self.list_items(namespace))

    def search(
        self,
        query: str,
        k: int,
        similarity_threshold: float = 0.0,
        namespace: Optional[str] = None,
        min_score_floor: float = 0.0,
    ) -> List[Tuple[MemoryItem, float]]:
        k = int(k)
        if k <= 0 or not (query or "").strip():
            return []
        ns = self._ns(namespace)
        snapshot = [it for it in self._items if it.namespace == ns]
        if not snapshot:
            return []

        qv = self._embed_one(query)
        cutoff = max(float(similarity_threshold), float(min_score_floor))

        scored: List[Tuple[MemoryItem, float]] = []
        for it in snapshot:
            if len(it.embedding) != len(qv):
                continue
            score = cosine(qv, it.embedding)
            if score >= cutoff:
                scored.append((it, score))

        scored.sort(key=lambda x: (x[1], x[0].updated_at), reverse=True)
        return scored[:k]
