from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

FactSource = Literal["llm", "heuristic"]


@dataclass(frozen=True)
class MemoryItem:
    id: str
    content: str
    embedding: List[float]
    namespace: str
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @property
    def importance(self) -> float:
        try:
            return float(self.metadata.get("importance", 0.5))
        except (TypeError, ValueError):
            return 0.5


@dataclass(frozen=True)
class ExtractedFact:
    """Кандидат в память. Напрямую не сохраняется."""

    content: str
    importance: float
    source: FactSource = "heuristic"


class Operation(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NOOP = "NOOP"

    @classmethod
    def parse(cls, raw: Any) -> "Operation":
        val = str(raw or "").strip().upper()
        for op in cls:
            if op.value == val:
                return op
        return cls.ADD


@dataclass
class ConsolidationDecision:
    operation: Operation
    memory_id: Optional[str] = None
    new_content: Optional[str] = None
    old_content: Optional[str] = None
    similarity: float = 0.0
    reason: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
