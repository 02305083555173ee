from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from memory_engine.domain.memory_models import MemoryItem


@runtime_checkable
class VectorMemoryStore(Protocol):
    """Персистентная векторная память, разбитая по namespace."""

    def add(self, content: str, metadata: Optional[Dict[str, Any]] = None, namespace: Optional[str] = None) -> str:
        ...

    def update(
        self,
        item_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        namespace: Optional[str] = None,
    ) -> Optional[MemoryItem]:
        ...

    def delete(self, item_id: str, namespace: Optional[str] = None) -> bool:
        ...

    def search(
        self,
        query: str,
        k: int,
        similarity_threshold: float = 0.0,
        namespace: Optional[str] = None,
        min_score_floor: float = 0.0,
    ) -> List[Tuple[MemoryItem, float]]:
        ...

    def get(self, item_id: str, namespace: Optional[str] = None) -> Optional[MemoryItem]:
        ...

    def list_items(self, namespace: Optional[str] = None) -> List[MemoryItem]:
        ...

    def count(self, namespace: Optional[str] = None) -> int:
        ...
