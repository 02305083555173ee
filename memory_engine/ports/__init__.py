from .augment import ContextAugmentor
from .embeddings import Embedder
from .llm import LLMClient, LLMResponse, LLMUsage
from .memory_extractor import FactExtractor
from .memory_store import VectorMemoryStore
from .notes import NotesStore
from .repo import ConversationRepo
from .tokens import TokenCounter

__all__ = [
    "ContextAugmentor",
    "Embedder",
    "LLMClient",
    "LLMResponse",
    "LLMUsage",
    "FactExtractor",
    "VectorMemoryStore",
    "NotesStore",
    "ConversationRepo",
    "TokenCounter",
]
