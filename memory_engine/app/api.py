from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from memory_engine.app.settings import AppSettings
from memory_engine.app.wiring import EngineBundle, build_bundle
from memory_engine.domain.errors import ProviderError, StorageError
from memory_engine.domain.memory_models import MemoryItem

logging.basicConfig(level=logging.INFO, format="%(message)s")
log = logging.getLogger("memory_engine")


class ChatRequest(BaseModel):
    conversation_id: str
    message: str
    session_metadata: Optional[Dict[str, str]] = None


class ChatResponse(BaseModel):
    answer: str
    meta: Dict[str, Any]


class MemoryItemOut(BaseModel):
    id: str
    namespace: str
    content: str
    importance: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str
    score: Optional[float] = None


def _item_out(it: MemoryItem, score: Optional[float] = None) -> MemoryItemOut:
    return MemoryItemOut(
        id=it.id,
        namespace=it.namespace,
        content=it.content,
        importance=it.importance,
        metadata=dict(it.metadata),
        created_at=it.created_at.isoformat(),
        updated_at=it.updated_at.isoformat(),
        score=score,
    )


def create_app(settings: AppSettings) -> FastAPI:
    app = FastAPI(title="memory_engine")

    def bundle() -> EngineBundle:
        return build_bundle(settings)

    def store():
        b = bundle()
        if b.store is None:
            raise HTTPException(status_code=404, detail="Vector memory is disabled")
        return b.store

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/chat", response_model=ChatResponse)
    def chat(req: ChatRequest):
        answer, meta = bundle().engine.handle_user_message_ex(
            req.conversation_id, req.message, req.session_metadata
        )
        return ChatResponse(answer=answer, meta=meta)

    @app.get("/memory/{namespace}", response_model=List[MemoryItemOut])
    def list_memory(namespace: str):
        items = store().list_items(namespace)
        items.sort(key=lambda it: (it.importance, it.updated_at), reverse=True)
        return [_item_out(it) for it in items]

    @app.get("/memory/{namespace}/search", response_model=List[MemoryItemOut])
    def search_memory(
        namespace: str,
        q: str = Query(..., min_length=1),
        k: int = Query(default=5, ge=1, le=50),
        threshold: float = Query(default=0.0, ge=-1.0, le=1.0),
    ):
        try:
            hits = store().search(q, k, threshold, namespace)
        except ProviderError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return [_item_out(it, score) for it, score in hits]

    @app.delete("/memory/{namespace}/{item_id}")
    def delete_memory(namespace: str, item_id: str):
        try:
            ok = store().delete(item_id, namespace)
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        if not ok:
            raise HTTPException(status_code=404, detail="Memory item not found")
        return {"deleted": True}

    @app.get("/notes")
    def get_notes(max_chars: int = Query(default=8000, ge=1)):
        notes = bundle().notes
        return {
            "long_term": notes.read_long_term(),
            "today": notes.read_today(),
            "context": notes.get_memory_context(max_chars),
        }

    return app


app = create_app(AppSettings.from_env())
