from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from memory_engine.domain.errors import ProviderError
from memory_engine.ports.embeddings import Embedder


@dataclass
class SentenceTransformerEmbedder(Embedder):
    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"

    def __post_init__(self) -> None:
        from sentence_transformers import SentenceTransformer
        self._model = SentenceTransformer(self.model_name)

    @property
    def dim(self) -> int:
        return int(self._model.get_sentence_embedding_dimension() or 0)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vecs = self._model.encode(list(texts), normalize_embeddings=True)
        except Exception as e:
            raise ProviderError(f"sbert embedding failed: {e}") from e
        return [[float(x) for x in v] for v in vecs]
