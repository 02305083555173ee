from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from memory_engine.domain.errors import ProviderError
from memory_engine.domain.models import Message
from memory_engine.ports.llm import LLMClient, LLMResponse


def build_headers(
    api_key: str,
    *,
    http_referer: Optional[str] = None,
    app_title: Optional[str] = None,
    extra_headers: Sequence[Tuple[str, str]] = (),
) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key.strip():
        headers["Authorization"] = f"Bearer {api_key.strip()}"
    if http_referer and http_referer.strip():
        headers["HTTP-Referer"] = http_referer.strip()
    if app_title and app_title.strip():
        headers["X-Title"] = app_title.strip()
    for k, v in extra_headers:
        if k.strip():
            headers[k.strip()] = v
    return headers


@dataclass
class OpenAICompatibleLLMClient(LLMClient):
    """
    /chat/completions в стиле OpenAI (OpenAI, OpenRouter, vLLM, ...).
    Ключ опционален (локальные сервера без авторизации).
    """

    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4o-mini"
    api_key: str = ""
    temperature: float = 0.2
    timeout_s: int = 60
    http_referer: Optional[str] = None
    app_title: Optional[str] = None
    extra_headers: List[Tuple[str, str]] = field(default_factory=list)

    session: Optional[requests.Session] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if self.session is None:
            self.session = requests.Session()
        self._headers = build_headers(
            self.api_key,
            http_referer=self.http_referer,
            app_title=self.app_title,
            extra_headers=self.extra_headers,
        )

    def generate(
        self,
        messages: Sequence[Message],
        *,
        max_output_tokens: int,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> LLMResponse:
        assert self.session is not None

        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": [{"role": m.role, "content": (m.content or "")} for m in messages],
            "max_tokens": int(max_output_tokens),
            "temperature": float(self.temperature if temperature is None else temperature),
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            r = self.session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers,
                timeout=self.timeout_s,
            )
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"chat completion failed: {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ProviderError("chat completion failed: missing choices")
        msg = choices[0].get("message") if isinstance(choices[0], dict) else None
        text = msg.get("content") if isinstance(msg, dict) else None
        if text is None:
            raise ProviderError("chat completion failed: missing response content")

        raw_usage = data.get("usage") or {}
        usage = {
            "input_tokens": int(raw_usage.get("prompt_tokens") or 0),
            "output_tokens": int(raw_usage.get("completion_tokens") or 0),
        }
        return LLMResponse(text=str(text).strip(), usage=usage)
