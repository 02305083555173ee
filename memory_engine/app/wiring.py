from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional

from memory_engine.app.settings import AppSettings
from memory_engine.domain.workspace import WorkspacePaths

from memory_engine.ports.augment import ContextAugmentor
from memory_engine.ports.embeddings import Embedder
from memory_engine.ports.llm import LLMClient
from memory_engine.ports.tokens import TokenCounter

from memory_engine.adapters.memory_augmentor import RecallAugmentor
from memory_engine.adapters.memory_extractor_llm import LLMFactExtractor
from memory_engine.adapters.notes_files import FileNotesStore
from memory_engine.adapters.repo_json import JsonFileConversationRepo
from memory_engine.adapters.vector_store_json import JsonVectorMemoryStore

from memory_engine.use_cases.chat_engine import ChatEngine
from memory_engine.use_cases.consolidator import MemoryConsolidator
from memory_engine.use_cases.memory_pipeline import MemoryPipeline
from memory_engine.use_cases.session_compactor import CompactionConfig, SessionCompactor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineBundle:
    engine: ChatEngine
    paths: WorkspacePaths
    notes: FileNotesStore
    store: Optional[JsonVectorMemoryStore]
    consolidator: Optional[MemoryConsolidator]
    counter: TokenCounter


# -----------------------
# Internal shared cache
# -----------------------
# Один бандл на набор настроек: локи сессий и writer-лок стора должны быть общими.
_cache_lock = Lock()
_shared: Dict[AppSettings, EngineBundle] = {}


def build_counter(settings: AppSettings) -> TokenCounter:
    if settings.provider.tokenizer_backend == "tiktoken":
        from memory_engine.adapters.tokens_tiktoken import TiktokenTokenCounter
        model = settings.provider.openai_model if settings.provider.llm_backend == "openai" else None
        return TiktokenTokenCounter(model_name=model)
    from memory_engine.adapters.tokens_approx import ApproxTokenCounter
    return ApproxTokenCounter()


def build_llm(settings: AppSettings) -> LLMClient:
    p = settings.provider
    if p.llm_backend == "ollama":
        from memory_engine.adapters.llm_ollama import OllamaLLMClient
        return OllamaLLMClient(base_url=p.ollama_url, model=p.ollama_model, timeout_s=p.timeout_s)
    if p.llm_backend == "openai":
        from memory_engine.adapters.llm_openai import OpenAICompatibleLLMClient
        return OpenAICompatibleLLMClient(
            base_url=p.openai_base_url,
            model=p.openai_model,
            api_key=p.openai_api_key,
            timeout_s=p.timeout_s,
            http_referer=p.http_referer or None,
            app_title=p.app_title or None,
        )
    from memory_engine.adapters.llm_mock import EchoMockLLM
    return EchoMockLLM()


def build_embedder(settings: AppSettings) -> Embedder:
    p = settings.provider
    if p.embedder_backend == "sbert":
        from memory_engine.adapters.embed_sbert import SentenceTransformerEmbedder
        return SentenceTransformerEmbedder(model_name=p.sbert_model)
    if p.embedder_backend == "openai":
        from memory_engine.adapters.embed_openai import OpenAICompatibleEmbedder
        return OpenAICompatibleEmbedder(
            base_url=p.openai_base_url,
            model=p.openai_embedding_model,
            api_key=p.openai_api_key,
            timeout_s=p.timeout_s,
        )
    from memory_engine.adapters.embed_hash import HashingEmbedder
    return HashingEmbedder()


def _build(settings: AppSettings) -> EngineBundle:
    paths = settings.paths()
    counter = build_counter(settings)
    llm = build_llm(settings)
    mem = settings.memory
    memory_model = settings.provider.memory_model or None

    notes = FileNotesStore(paths)
    repo = JsonFileConversationRepo(str(paths.conversations_dir()))

    store: Optional[JsonVectorMemoryStore] = None
    consolidator: Optional[MemoryConsolidator] = None
    extractor: Optional[LLMFactExtractor] = None
    augmentors: List[ContextAugmentor] = []

    if mem.vector_enabled:
        store = JsonVectorMemoryStore(
            str(paths.vector_store_file(mem.store_namespace)),
            build_embedder(settings),
            max_memories=mem.max_memories,
            default_namespace=mem.store_namespace,
        )
        extractor = LLMFactExtractor(llm=llm, model=memory_model, max_facts=mem.max_facts)
        consolidator = MemoryConsolidator(
            store,
            llm,
            model=memory_model,
            candidate_threshold=mem.candidate_threshold,
            min_score_floor=mem.min_score_floor,
            candidate_limit=mem.candidate_limit,
        )
        if mem.recall_enabled:
            augmentors.append(
                RecallAugmentor(
                    store=store,
                    counter=counter,
                    top_k=mem.recall_top_k,
                    threshold=mem.recall_threshold,
                    max_tokens=mem.recall_max_tokens,
                )
            )

    c = settings.compaction
    pipeline = MemoryPipeline(
        notes=notes,
        compactor=SessionCompactor(
            CompactionConfig(
                threshold=c.threshold,
                recent_turns_keep=c.recent_turns_keep,
                summary_max_turns=c.summary_max_turns,
                max_facts=c.max_facts,
            )
        ),
        extractor=extractor,
        consolidator=consolidator,
        extraction_interval=mem.extraction_interval,
        notes_max_chars=mem.notes_max_chars,
        notes_enabled=mem.notes_enabled,
    )

    engine = ChatEngine(
        repo=repo,
        llm=llm,
        memory=pipeline,
        augmentors=augmentors,
        system_prompt=settings.system_prompt,
        max_output_tokens=settings.max_output_tokens,
    )

    log.info(
        "memory engine ready: workspace=%s llm=%s embedder=%s vector=%s",
        paths.workspace,
        settings.provider.llm_backend,
        settings.provider.embedder_backend,
        mem.vector_enabled,
    )
    return EngineBundle(
        engine=engine,
        paths=paths,
        notes=notes,
        store=store,
        consolidator=consolidator,
        counter=counter,
    )


def build_bundle(settings: AppSettings) -> EngineBundle:
    with _cache_lock:
        bundle = _shared.get(settings)
        if bundle is None:
            bundle = _build(settings)
            _shared[settings] = bundle
    return bundle
