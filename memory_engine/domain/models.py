from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal
from uuid import uuid4

Role = Literal["system", "user", "assistant", "tool"]


def utcnow() -> datetime:
    """Всегда timezone-aware UTC."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class Message:
    """Одна реплика диалога (ChatTurn): роль + текст."""

    id: str
    role: Role
    content: str = ""
    created_at: datetime = field(default_factory=utcnow)
    meta: Dict[str, Any] = field(default_factory=dict)


def turn(role: Role, content: str, **meta: Any) -> Message:
    return Message(id=new_id(), role=role, content=content, created_at=utcnow(), meta=dict(meta))


@dataclass
class Conversation:
    """
    Каноническая история сессии: только append.
    Компактор работает с копией и сюда ничего не пишет.
    """

    conversation_id: str
    messages: List[Message] = field(default_factory=list)
