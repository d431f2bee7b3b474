"""LLM client — HTTP connection to a chat-completion backend.

The orchestrator talks to the model through a ChatModel callable:

    async def __call__(self, turns, *, model, temperature) -> str: ...

Implementations raise LLMError for every connection or protocol failure.

    HttpChatModel  — real HTTP client, supports Ollama and OpenAI-compatible
                     chat backends. Selected by provider_format.
    EchoChatModel  — returns the last user turn. Useful for smoke-testing
                     the relay wiring without a running model.

ModelInvoker wraps a ChatModel with a hard timeout and turns every fault
into a failed Completion, so nothing raises past it. It never retries.
Tests use StubChatModel (defined in the test helpers) instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Literal, Protocol

import httpx

from craftbot.models import Completion, ConversationTurn

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every chat model implementation must match this signature
# ---------------------------------------------------------------------------

class ChatModel(Protocol):
    async def __call__(
        self, turns: list[ConversationTurn], *, model: str = "", temperature: float = 0.7
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpChatModel — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["ollama", "openai"]


class HttpChatModel:
    """Async HTTP client for chat-completion backends.

    Supported formats:
      "ollama"  — POST /api/chat  {"model", "messages", "stream": false,
                                   "options": {"temperature", "num_predict"}}
                  Response: {"message": {"content": "..."}}
      "openai"  — POST /v1/chat/completions {"model", "messages",
                                   "temperature", "max_tokens"}
                  Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:11434".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "ollama".
        model:           Default model when a call does not name one.
        timeout:         HTTP timeout in seconds. Defaults to 60.
        max_tokens:      Completion length cap. Defaults to 500.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "ollama",
        model: str = "",
        timeout: float = 60.0,
        max_tokens: int = 500,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens

    @property
    def default_model(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self, turns: list[ConversationTurn], model: str, temperature: float
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        messages = [t.as_chat() for t in turns]
        model = model or self._model
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            body: dict = {
                "messages": messages,
                "temperature": temperature,
                "max_tokens": self._max_tokens,
            }
            if model:
                body["model"] = model
            return url, body

        # ollama (default)
        url = f"{self._base_url}/api/chat"
        return url, {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": self._max_tokens},
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "content" not in (choices[0].get("message") or {}):
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["message"]["content"]

        # ollama
        message = data.get("message")
        if not isinstance(message, dict) or "content" not in message:
            raise LLMError("Unexpected response format from Ollama backend")
        return message["content"]

    async def __call__(
        self, turns: list[ConversationTurn], *, model: str = "", temperature: float = 0.7
    ) -> str:
        url, body = self._build_request(turns, model, temperature)
        logger.debug("llm call url=%s model=%s turns=%d", url, body.get("model"), len(turns))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response len=%d", len(text))
        return text

    async def list_models(self) -> list[str]:
        """Model names the backend reports."""
        path = "/v1/models" if self._format == "openai" else "/api/tags"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(f"{self._base_url}{path}", headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise LLMError(f"Cannot list models at {self._base_url}: {e}") from e

        data = resp.json()
        if self._format == "openai":
            return [m.get("id", "") for m in data.get("data", [])]
        return [m.get("name", "") for m in data.get("models", [])]

    async def health(self) -> dict:
        """Reachability plus whether the default model is installed."""
        try:
            models = await self.list_models()
        except LLMError as e:
            return {"ok": False, "error": str(e), "models": []}
        return {
            "ok": True,
            "models": models,
            "model_available": not self._model or self._model in models,
        }


# ---------------------------------------------------------------------------
# EchoChatModel — no network; useful for relay smoke tests
# ---------------------------------------------------------------------------

class EchoChatModel:
    """Wraps the last user turn in a <say> tag. No network calls."""

    async def __call__(
        self, turns: list[ConversationTurn], *, model: str = "", temperature: float = 0.7
    ) -> str:
        last = next((t.content for t in reversed(turns) if t.role == "user"), "")
        logger.debug("EchoChatModel turns=%d", len(turns))
        return f"<say>{last}</say>"


# ---------------------------------------------------------------------------
# ModelInvoker — bounded, non-raising wrapper used by the orchestrator
# ---------------------------------------------------------------------------

class ModelInvoker:
    def __init__(self, model: ChatModel, timeout: float = 60.0) -> None:
        self.model = model
        self.timeout = timeout

    async def complete(
        self, turns: list[ConversationTurn], *, model: str = "", temperature: float = 0.7
    ) -> Completion:
        start = time.monotonic()
        try:
            text = await asyncio.wait_for(
                self.model(turns, model=model, temperature=temperature), self.timeout
            )
        except asyncio.TimeoutError:
            error = f"model call timed out after {self.timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            return Completion(success=True, text=text, duration_ms=_ms_since(start))

        logger.error("model call failed: %s", error)
        return Completion(success=False, error=error, duration_ms=_ms_since(start))


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


# ---------------------------------------------------------------------------
# LLMError — raised by HttpChatModel for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
