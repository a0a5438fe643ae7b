import json
import logging
import os
import re
import time
from typing import Optional

import requests
from pydantic import BaseModel

from gellobit.errors import AIUnavailable, ConfigurationError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json|javascript|js)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}
MAX_RETRY_AFTER = 60


def _scan(s: str, start: int):
    """Yield (index, char) pairs outside string literals."""
    in_string = escape = False
    for idx in range(start, len(s)):
        ch = s[idx]
        if escape:
            escape = False
        elif in_string:
            if ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        else:
            yield idx, ch


def _strip_comments(s: str) -> str:
    out = []
    i, n = 0, len(s)
    in_string = escape = False
    while i < n:
        ch = s[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
        elif ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif s.startswith("//", i):
            while i < n and s[i] not in "\r\n":
                i += 1
        elif s.startswith("/*", i):
            end = s.find("*/", i + 2)
            i = n if end < 0 else end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out).strip()


def extract_json_object(text: str) -> str:
    """Crop a model reply down to its first balanced {...} block.

    Handles markdown fences and // or /* */ comments that some models emit.
    """
    fence = _FENCE.search(text)
    if fence:
        text = fence.group(1)
    text = _strip_comments(text)

    start = text.find("{")
    if start < 0:
        return text.strip()
    depth = 0
    for idx, ch in _scan(text, start):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start: idx + 1]
    return text[start:].strip()


class ProviderConfig(BaseModel):
    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout: float = 60


class LLMClient:
    """One `complete(system_prompt, user_prompt, model)` capability per provider kind."""

    kind = "base"
    default_base_url = ""

    def __init__(self, config: ProviderConfig, max_retries: int = 3):
        self.config = config
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self.max_retries = max(1, max_retries)

    def _post(self, url: str, payload: dict, headers: dict) -> dict:
        response = requests.post(url, json=payload, headers=headers, timeout=self.config.timeout)
        if response.status_code in RETRYABLE_STATUS:
            raise _Retryable(response.status_code, response.headers.get("Retry-After"), response.text[:300])
        response.raise_for_status()
        return response.json()

    def _request(self, system_prompt: str, user_prompt: str, model: str) -> str:
        raise NotImplementedError

    def complete(self, system_prompt: str, user_prompt: str, model: Optional[str] = None) -> str:
        model = model or self.config.model
        attempt = 0
        while True:
            try:
                text = self._request(system_prompt, user_prompt, model)
                if not text or not text.strip():
                    raise ValueError("Empty response from AI provider")
                return text
            except requests.HTTPError as e:
                # 4xx other than rate limits will not fix themselves
                raise AIUnavailable(f"{self.config.provider} rejected the request: {e}") from e
            except (_Retryable, requests.RequestException, ValueError) as e:
                attempt += 1
                if attempt >= self.max_retries:
                    logger.error(f"{self.config.provider}/{model}: no valid response after {self.max_retries} attempts.")
                    raise AIUnavailable(f"LLM request failed: {e}") from e
                wait_time = 2 ** attempt
                if isinstance(e, _Retryable) and e.retry_after is not None:
                    wait_time = min(MAX_RETRY_AFTER, max(wait_time, e.retry_after))
                logger.warning(f"Retry {attempt}/{self.max_retries} after error: {e}. Waiting {wait_time}s...")
                time.sleep(wait_time)


class _Retryable(Exception):
    def __init__(self, status: int, retry_after: Optional[str], body: str):
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        try:
            self.retry_after = int(retry_after) if retry_after else None
        except ValueError:
            self.retry_after = None


class OpenAICompatibleClient(LLMClient):
    """OpenAI chat completions contract; also serves DeepSeek and Gemini's compatible endpoint."""

    kind = "openai_compatible"
    default_base_url = "https://api.openai.com/v1"

    def _request(self, system_prompt: str, user_prompt: str, model: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        data = self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
                "response_format": {"type": "json_object"},
            },
            headers,
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected completion payload: {json.dumps(data)[:300]}") from e


class AnthropicClient(LLMClient):
    kind = "anthropic"
    default_base_url = "https://api.anthropic.com"

    def _request(self, system_prompt: str, user_prompt: str, model: str) -> str:
        data = self._post(
            f"{self.base_url}/v1/messages",
            {
                "model": model,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
            {
                "Content-Type": "application/json",
                "x-api-key": self.config.api_key or "",
                "anthropic-version": "2023-06-01",
            },
        )
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


class OllamaClient(LLMClient):
    kind = "ollama"
    default_base_url = "http://localhost:11434"

    def _request(self, system_prompt: str, user_prompt: str, model: str) -> str:
        data = self._post(
            f"{self.base_url}/api/generate",
            {
                "model": model,
                "system": system_prompt,
                "prompt": user_prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": self.config.temperature},
            },
            {"Content-Type": "application/json"},
        )
        return data.get("response", "")


KEYED_PROVIDERS = {"openai", "deepseek", "gemini", "anthropic"}

PROVIDERS = {
    "openai": (OpenAICompatibleClient, "https://api.openai.com/v1"),
    "deepseek": (OpenAICompatibleClient, "https://api.deepseek.com/v1"),
    "gemini": (OpenAICompatibleClient, "https://generativelanguage.googleapis.com/v1beta/openai"),
    "openai_compatible": (OpenAICompatibleClient, None),
    "anthropic": (AnthropicClient, None),
    "ollama": (OllamaClient, None),
}


def build_client(config: ProviderConfig, max_retries: int = 3) -> LLMClient:
    try:
        cls, base_url = PROVIDERS[config.provider]
    except KeyError:
        raise ConfigurationError(f"Unknown AI provider '{config.provider}'")
    if not config.base_url and base_url:
        config = config.model_copy(update={"base_url": base_url})
    if config.provider in KEYED_PROVIDERS and not config.api_key:
        raise ConfigurationError(f"AI provider '{config.provider}' has no API key configured")
    return cls(config, max_retries=max_retries)


def env_provider_config() -> Optional[ProviderConfig]:
    """Global fallback from LLM_* environment variables."""
    provider = os.getenv("LLM_PROVIDER")
    model = os.getenv("LLM_MODEL")
    if not provider or not model:
        return None
    return ProviderConfig(
        provider=provider,
        model=model,
        api_key=os.getenv("LLM_API_KEY") or None,
        base_url=os.getenv("LLM_BASE_URL") or None,
    )
