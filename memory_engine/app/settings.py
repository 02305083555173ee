from __future__ import annotations

import os
from dataclasses import dataclass

from memory_engine.domain.workspace import WorkspacePaths


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None or v.strip() == "" else v


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_choice(name: str, default: str, allowed: set[str]) -> str:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    val = v.strip().lower()
    return val if val in allowed else default


@dataclass(frozen=True)
class ProviderSettings:
    llm_backend: str = "mock"          # mock | ollama | openai
    embedder_backend: str = "hash"     # hash | sbert | openai
    tokenizer_backend: str = "approx"  # approx | tiktoken

    ollama_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "llama3.1:8b"

    openai_base_url: str = "https://openrouter.ai/api/v1"
    openai_api_key: str = ""
    openai_model: str = "openai/gpt-4o-mini"
    openai_embedding_model: str = "openai/text-embedding-3-small"
    http_referer: str = ""
    app_title: str = "memory_engine"
    timeout_s: int = 60

    sbert_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # модель для извлечения/консолидации; пусто -> модель чата
    memory_model: str = ""


@dataclass(frozen=True)
class MemorySettings:
    vector_enabled: bool = True
    store_namespace: str = "default"
    max_memories: int = 1000

    extraction_interval: int = 5
    max_facts: int = 5

    candidate_threshold: float = 0.5
    min_score_floor: float = 0.3
    candidate_limit: int = 3

    recall_enabled: bool = True
    recall_top_k: int = 5
    recall_threshold: float = 0.3
    recall_max_tokens: int = 300

    notes_enabled: bool = True
    notes_max_chars: int = 8000


@dataclass(frozen=True)
class CompactionSettings:
    threshold: int = 50
    recent_turns_keep: int = 8
    summary_max_turns: int = 15
    max_facts: int = 10


@dataclass(frozen=True)
class AppSettings:
    workspace_dir: str = "./workspace"
    system_prompt: str = "You are a helpful personal assistant."
    max_output_tokens: int = 1024
    provider: ProviderSettings = ProviderSettings()
    memory: MemorySettings = MemorySettings()
    compaction: CompactionSettings = CompactionSettings()

    def paths(self) -> WorkspacePaths:
        return WorkspacePaths.from_workspace(self.workspace_dir)

    @staticmethod
    def from_env() -> "AppSettings":
        prov = ProviderSettings(
            llm_backend=_env_choice("ME_LLM", ProviderSettings.llm_backend, {"mock", "ollama", "openai"}),
            embedder_backend=_env_choice("ME_EMBEDDER", ProviderSettings.embedder_backend, {"hash", "sbert", "openai"}),
            tokenizer_backend=_env_choice("ME_TOKENIZER", ProviderSettings.tokenizer_backend, {"approx", "tiktoken"}),

            ollama_url=_env_str("ME_OLLAMA_URL", ProviderSettings.ollama_url),
            ollama_model=_env_str("ME_OLLAMA_MODEL", ProviderSettings.ollama_model),

            openai_base_url=_env_str("ME_OPENAI_BASE_URL", ProviderSettings.openai_base_url),
            openai_api_key=_env_str("ME_OPENAI_API_KEY", ProviderSettings.openai_api_key),
            openai_model=_env_str("ME_OPENAI_MODEL", ProviderSettings.openai_model),
            openai_embedding_model=_env_str("ME_OPENAI_EMBEDDING_MODEL", ProviderSettings.openai_embedding_model),
            http_referer=_env_str("ME_HTTP_REFERER", ProviderSettings.http_referer),
            app_title=_env_str("ME_APP_TITLE", ProviderSettings.app_title),
            timeout_s=_env_int("ME_TIMEOUT_S", ProviderSettings.timeout_s),

            sbert_model=_env_str("ME_SBERT_MODEL", ProviderSettings.sbert_model),
            memory_model=_env_str("ME_MEMORY_MODEL", ProviderSettings.memory_model),
        )

        mem = MemorySettings(
            vector_enabled=_env_bool("ME_VECTOR_MEMORY", MemorySettings.vector_enabled),
            store_namespace=_env_str("ME_STORE_NAMESPACE", MemorySettings.store_namespace),
            max_memories=_env_int("ME_MAX_MEMORIES", MemorySettings.max_memories),

            extraction_interval=_env_int("ME_EXTRACTION_INTERVAL", MemorySettings.extraction_interval),
            max_facts=_env_int("ME_MAX_FACTS", MemorySettings.max_facts),

            candidate_threshold=_env_float("ME_CANDIDATE_THRESHOLD", MemorySettings.candidate_threshold),
            min_score_floor=_env_float("ME_MIN_SCORE_FLOOR", MemorySettings.min_score_floor),
            candidate_limit=_env_int("ME_CANDIDATE_LIMIT", MemorySettings.candidate_limit),

            recall_enabled=_env_bool("ME_RECALL", MemorySettings.recall_enabled),
            recall_top_k=_env_int("ME_RECALL_TOPK", MemorySettings.recall_top_k),
            recall_threshold=_env_float("ME_RECALL_THRESHOLD", MemorySettings.recall_threshold),
            recall_max_tokens=_env_int("ME_RECALL_MAX_TOKENS", MemorySettings.recall_max_tokens),

            notes_enabled=_env_bool("ME_NOTES", MemorySettings.notes_enabled),
            notes_max_chars=_env_int("ME_NOTES_MAX_CHARS", MemorySettings.notes_max_chars),
        )

        comp = CompactionSettings(
            threshold=_env_int("ME_COMPACTION_THRESHOLD", CompactionSettings.threshold),
            recent_turns_keep=_env_int("ME_RECENT_TURNS_KEEP", CompactionSettings.recent_turns_keep),
            summary_max_turns=_env_int("ME_SUMMARY_MAX_TURNS", CompactionSettings.summary_max_turns),
            max_facts=_env_int("ME_COMPACTION_MAX_FACTS", CompactionSettings.max_facts),
        )

        return AppSettings(
            workspace_dir=_env_str("ME_WORKSPACE", AppSettings.workspace_dir),
            system_prompt=_env_str("ME_SYSTEM_PROMPT", AppSettings.system_prompt),
            max_output_tokens=_env_int("ME_MAX_OUTPUT_TOKENS", AppSettings.max_output_tokens),
            provider=prov,
            memory=mem,
            compaction=comp,
        )
