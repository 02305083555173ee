from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from memory_engine.adapters.llm_openai import build_headers
from memory_engine.domain.errors import ProviderError
from memory_engine.ports.embeddings import Embedder


@dataclass
class OpenAICompatibleEmbedder(Embedder):
    """POST {base_url}/embeddings, один запрос на батч."""

    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/text-embedding-3-small"
    api_key: str = ""
    timeout_s: int = 30
    expected_dim: int = 0
    extra_headers: List[Tuple[str, str]] = field(default_factory=list)

    session: Optional[requests.Session] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if self.session is None:
            self.session = requests.Session()
        self._headers = build_headers(self.api_key, extra_headers=self.extra_headers)
        self._dim = int(self.expected_dim)

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        assert self.session is not None
        if not texts:
            return []

        payload: Dict[str, Any] = {"model": self.model, "input": list(texts)}
        try:
            r = self.session.post(
                f"{self.base_url}/embeddings",
                json=payload,
                headers=self._headers,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"embedding request failed: {e}") from e

        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list) or len(rows) != len(texts):
            raise ProviderError("embedding request failed: missing embedding")

        rows = sorted(rows, key=lambda d: int(d.get("index", 0) or 0) if isinstance(d, dict) else 0)
        out: List[List[float]] = []
        for row in rows:
            vec = row.get("embedding") if isinstance(row, dict) else None
            if not isinstance(vec, list) or not vec:
                raise ProviderError("embedding request failed: empty vector")
            out.append([float(x) for x in vec])

        if self._dim <= 0:
            self._dim = len(out[0])
        for v in out:
            if len(v) != self._dim:
                raise ProviderError(f"embedding dim mismatch: got {len(v)} expected {self._dim}")
        return out
