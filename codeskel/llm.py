"""Multi-provider LLM adapter used for skeleton generation.

Supports Ollama (local), OpenAI-compatible endpoints, Anthropic and Groq.
Providers return ``None`` when the service is unreachable or the response
is malformed; callers decide how to treat a missing completion.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import llm_settings

logger = logging.getLogger(__name__)


class LLMProvider:
    """Base class for LLM providers."""

    timeout = 60

    def generate(self, prompt: str, max_tokens: int = 1024) -> Optional[str]:
        """Generate a completion for ``prompt``."""
        raise NotImplementedError

    def _post(self, url: str, headers: dict, payload: dict) -> Optional[dict]:
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("%s request failed: %s", type(self).__name__, exc)
            return None


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider."""

    def __init__(self, model: str, endpoint: str):
        self.model = model
        self.endpoint = endpoint

    def generate(self, prompt: str, max_tokens: int = 1024) -> Optional[str]:
        parsed = self._post(
            self.endpoint,
            {"Content-Type": "application/json"},
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.1, "num_predict": max_tokens},
            },
        )
        return parsed.get("response") if parsed else None


class OpenAIProvider(LLMProvider):
    """OpenAI API provider (also works with other OpenAI-compatible APIs)."""

    def __init__(self, model: str, api_key: str, endpoint: str = "https://api.openai.com/v1/chat/completions"):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint

    def generate(self, prompt: str, max_tokens: int = 1024) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = self._post(
            self.endpoint,
            {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0.1,
                "max_tokens": max_tokens,
            },
        )
        try:
            return parsed["choices"][0]["message"]["content"] if parsed else None
        except (KeyError, IndexError):
            return None


class GroqProvider(OpenAIProvider):
    """Groq cloud API provider (OpenAI-compatible)."""

    def __init__(self, model: str, api_key: str):
        super().__init__(model, api_key, "https://api.groq.com/openai/v1/chat/completions")


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider."""

    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = "https://api.anthropic.com/v1/messages"

    def generate(self, prompt: str, max_tokens: int = 1024) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = self._post(
            self.endpoint,
            {
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
            },
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens,
                "temperature": 0.1,
            },
        )
        try:
            return parsed["content"][0]["text"] if parsed else None
        except (KeyError, IndexError):
            return None


class LocalLLM:
    """Provider selection from explicit arguments or the ``[llm]`` config section."""

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        settings = llm_settings()
        self.provider_name = (provider or settings.get("provider", "ollama")).lower()
        self.model = model or settings.get("model", "")
        self.api_key = api_key or settings.get("api_key", "")
        self.endpoint = endpoint or settings.get("endpoint", "")
        self.provider = self._create_provider()

    def _create_provider(self) -> LLMProvider:
        name = self.provider_name
        if name == "openai":
            return OpenAIProvider(
                self.model or "gpt-4o-mini",
                self.api_key,
                self.endpoint or "https://api.openai.com/v1/chat/completions",
            )
        if name == "anthropic":
            return AnthropicProvider(self.model or "claude-3-5-haiku-latest", self.api_key)
        if name == "groq":
            return GroqProvider(self.model or "llama-3.3-70b-versatile", self.api_key)
        return OllamaProvider(
            self.model or "qwen2.5-coder:7b",
            self.endpoint or "http://127.0.0.1:11434/api/generate",
        )

    def generate(self, prompt: str, max_tokens: int = 1024) -> Optional[str]:
        response = self.provider.generate(prompt, max_tokens=max_tokens)
        if response is None or not response.strip():
            return None
        return response
