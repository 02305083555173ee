import json

import pytest
import requests

from memory_engine.adapters.embed_hash import HashingEmbedder
from memory_engine.adapters.embed_openai import OpenAICompatibleEmbedder
from memory_engine.adapters.embed_sbert import SentenceTransformerEmbedder
from memory_engine.adapters.llm_mock import ScriptedMockLLM
from memory_engine.adapters.llm_ollama import OllamaLLMClient
from memory_engine.adapters.llm_openai import OpenAICompatibleLLMClient, build_headers
from memory_engine.domain.errors import ProviderError
from memory_engine.domain.models import turn
from memory_engine.use_cases.structured import ReplyStatus, request_json, strip_code_fences


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status
        self.content = json.dumps(payload).encode("utf-8")

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def test_openai_client_payload_and_usage():
    session = FakeSession(FakeResponse({
        "choices": [{"message": {"content": " {\"a\": 1} "}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }))
    llm = OpenAICompatibleLLMClient(base_url="http://llm.local/v1/", api_key="k", timeout_s=5, session=session)

    resp = llm.generate([turn("user", "hi")], max_output_tokens=50, temperature=0.0, json_mode=True, model="m2")

    assert resp.text == '{"a": 1}'
    assert resp.usage == {"input_tokens": 12, "output_tokens": 3}
    post = session.posts[0]
    assert post["url"] == "http://llm.local/v1/chat/completions"
    assert post["timeout"] == 5
    assert post["headers"]["Authorization"] == "Bearer k"
    assert post["json"]["model"] == "m2"
    assert post["json"]["response_format"] == {"type": "json_object"}
    assert post["json"]["temperature"] == 0.0


def test_openai_client_errors_become_provider_errors():
    llm = OpenAICompatibleLLMClient(session=FakeSession(error=requests.ConnectionError("refused")))
    with pytest.raises(ProviderError):
        llm.generate([turn("user", "hi")], max_output_tokens=10)

    llm = OpenAICompatibleLLMClient(session=FakeSession(FakeResponse({"error": "rate limited"}, status=429)))
    with pytest.raises(ProviderError):
        llm.generate([turn("user", "hi")], max_output_tokens=10)

    llm = OpenAICompatibleLLMClient(session=FakeSession(FakeResponse({"choices": []})))
    with pytest.raises(ProviderError):
        llm.generate([turn("user", "hi")], max_output_tokens=10)


def test_build_headers_optional_parts():
    assert build_headers("") == {"Content-Type": "application/json"}
    h = build_headers(" key ", http_referer="https://x.dev", app_title="me", extra_headers=[("X-A", "1"), (" ", "2")])
    assert h["Authorization"] == "Bearer key"
    assert h["HTTP-Referer"] == "https://x.dev"
    assert h["X-Title"] == "me"
    assert h["X-A"] == "1"
    assert len(h) == 5


def test_ollama_client_json_mode():
    session = FakeSession(FakeResponse({"message": {"content": "hello"}, "prompt_eval_count": 7, "eval_count": 2}))
    llm = OllamaLLMClient(base_url="http://127.0.0.1:11434/", session=session)

    resp = llm.generate([turn("user", "hi")], max_output_tokens=20, json_mode=True)
    assert resp.text == "hello"
    assert resp.usage == {"input_tokens": 7, "output_tokens": 2}
    assert session.posts[0]["url"] == "http://127.0.0.1:11434/api/chat"
    assert session.posts[0]["json"]["format"] == "json"
    assert session.posts[0]["json"]["options"]["num_predict"] == 20

    broken = OllamaLLMClient(session=FakeSession(error=requests.Timeout("slow")))
    with pytest.raises(ProviderError):
        broken.generate([turn("user", "hi")], max_output_tokens=20)


def test_openai_embedder_orders_by_index_and_checks_dim():
    session = FakeSession(FakeResponse({"data": [
        {"index": 1, "embedding": [0.0, 1.0]},
        {"index": 0, "embedding": [1.0, 0.0]},
    ]}))
    emb = OpenAICompatibleEmbedder(base_url="http://e.local/v1", session=session)
    assert emb.embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
    assert emb.dim == 2
    assert emb.embed([]) == []

    bad = OpenAICompatibleEmbedder(expected_dim=3, session=FakeSession(FakeResponse({"data": [{"index": 0, "embedding": [1.0]}]})))
    with pytest.raises(ProviderError):
        bad.embed(["a"])


def test_hashing_embedder_is_deterministic_and_normalized():
    emb = HashingEmbedder()
    a, b = emb.embed(["User likes tea", "User likes tea"])
    assert a == b
    assert len(a) == emb.dim == 384
    assert sum(x * x for x in a) == pytest.approx(1.0)
    assert emb.embed([""])[0] == [0.0] * 384


def test_request_json_statuses():
    ok = request_json(ScriptedMockLLM(default='```json\n{"x": 1}\n```'), "q", max_output_tokens=10, temperature=0.0)
    assert ok.status is ReplyStatus.OK and ok.ok and ok.data == {"x": 1}

    bad = request_json(ScriptedMockLLM(default="not json"), "q", max_output_tokens=10, temperature=0.0)
    assert bad.status is ReplyStatus.PARSE_FAILED and not bad.ok

    down = request_json(ScriptedMockLLM(default=None), "q", max_output_tokens=10, temperature=0.0)
    assert down.status is ReplyStatus.TRANSPORT_FAILED
    assert "scripted failure" in down.error


def test_strip_code_fences():
    assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fences("  {}  ") == "{}"


class FakeSentenceModel:
    def __init__(self, error=None):
        self.error = error

    def get_sentence_embedding_dimension(self):
        return 2

    def encode(self, texts, normalize_embeddings=False):
        if self.error is not None:
            raise self.error
        return [[0.6, 0.8] for _ in texts]


def _sbert(model):
    # без __post_init__: модель не скачивается
    emb = object.__new__(SentenceTransformerEmbedder)
    emb._model = model
    return emb


def test_sbert_embedder_maps_model_errors_to_provider_error():
    ok = _sbert(FakeSentenceModel())
    assert ok.embed(["a", "b"]) == [[0.6, 0.8], [0.6, 0.8]]
    assert ok.dim == 2
    assert ok.embed([]) == []

    broken = _sbert(FakeSentenceModel(error=RuntimeError("model crashed")))
    with pytest.raises(ProviderError, match="model crashed"):
        broken.embed(["a"])
