from .llm_mock import EchoMockLLM, ScriptedMockLLM
from .tokens_approx import ApproxTokenCounter
from .repo_json import JsonFileConversationRepo
from .embed_hash import HashingEmbedder
from .vector_store_json import JsonVectorMemoryStore
from .notes_files import FileNotesStore

__all__ = [
    "EchoMockLLM", "ScriptedMockLLM",
    "ApproxTokenCounter",
    "JsonFileConversationRepo",
    "HashingEmbedder",
    "JsonVectorMemoryStore",
    "FileNotesStore",
]
