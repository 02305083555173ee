from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from memory_engine.domain.errors import StorageError
from memory_engine.domain.models import Conversation, Message
from memory_engine.ports.repo import ConversationRepo

log = logging.getLogger(__name__)

_SAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def _dt_from_iso(s: str) -> datetime:
    s = (s or "").strip()
    if not s:
        return datetime.now(timezone.utc)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return datetime.now(timezone.utc)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def _m2d(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "created_at": m.created_at.isoformat(),
        "meta": m.meta,
    }


def _d2m(d: Dict[str, Any]) -> Message:
    meta = d.get("meta")
    return Message(
        id=str(d.get("id", "")),
        role=d.get("role", "user"),
        content=str(d.get("content", "")),
        created_at=_dt_from_iso(str(d.get("created_at", ""))),
        meta=meta if isinstance(meta, dict) else {},
    )


class JsonFileConversationRepo(ConversationRepo):
    """
    Один файл на диалог: <dir>/<conversation_id>.json
    { "conversation_id": "...", "messages": [ {id, role, content, created_at, meta}, ... ] }
    Хранится только каноническая (несжатая) история.
    """

    def __init__(self, directory: str):
        self.dir = Path(directory)
        self.dir.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        safe = _SAFE_RE.sub("_", conversation_id).strip("._") or "conversation"
        if safe != conversation_id:
            safe = f"{safe[:64]}-{hashlib.sha1(conversation_id.encode('utf-8')).hexdigest()[:8]}"
        return self.dir / f"{safe}.json"

    def load(self, conversation_id: str) -> Conversation:
        path = self._path(conversation_id)
        if not path.exists():
            return Conversation(conversation_id=conversation_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            log.warning("conversation %s unreadable (%s), starting fresh", conversation_id, e)
            return Conversation(conversation_id=conversation_id)

        rows = data.get("messages", []) if isinstance(data, dict) else []
        messages: List[Message] = [_d2m(r) for r in rows if isinstance(r, dict)]
        return Conversation(conversation_id=conversation_id, messages=messages)

    def save(self, convo: Conversation) -> None:
        data = {
            "conversation_id": convo.conversation_id,
            "messages": [_m2d(m) for m in convo.messages],
        }
        try:
            _atomic_write(self._path(convo.conversation_id), json.dumps(data, ensure_ascii=False, indent=2))
        except OSError as e:
            raise StorageError(f"failed to save conversation {convo.conversation_id}: {e}") from e

    def append_messages(self, conversation_id: str, messages: List[Message]) -> None:
        convo = self.load(conversation_id)
        convo.messages.extend(messages)
        self.save(convo)
