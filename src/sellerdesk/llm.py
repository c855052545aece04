"""Chat-completion client with switchable backends (OpenAI, Mistral, vLLM, Ollama)."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import httpx

try:  # pragma: no cover - guard openai import for static analysis
    from openai import OpenAI
except Exception:  # pragma: no cover
    OpenAI = None  # type: ignore[assignment]

from .config import Settings, normalize_openai_compatible_base_url
from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

Message = Mapping[str, str]


class LLMError(RuntimeError):
    """Raised when the chat backend is misconfigured, unreachable or returns nothing."""


class ChatCompleter(Protocol):
    def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float,
        max_tokens: int,
        response_format: Mapping[str, Any] | None = None,
        model: str | None = None,
    ) -> str: ...


class ChatCompletionClient:
    """Send chat messages to the configured backend and return the text reply."""

    def __init__(
        self,
        settings: Settings,
        *,
        openai_client: Any | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._openai_client = openai_client
        self._metrics = metrics
        self._timeout = settings.llm_request_timeout
        if settings.is_openai_chat_backend:
            self._backend = "openai"
        elif settings.is_mistral_chat_backend:
            self._backend = "mistral"
        elif settings.is_vllm_chat_backend:
            self._backend = "vllm"
        elif settings.is_ollama_chat_backend:
            self._backend = "ollama"
        else:
            raise LLMError(f"Unsupported chat backend: {settings.chat_backend}")
        logger.info(
            "llm.backend_ready backend=%s model=%s", self._backend, settings.chat_model_name()
        )

    @property
    def backend(self) -> str:
        return self._backend

    def complete(
        self,
        messages: Sequence[Message],
        *,
        temperature: float,
        max_tokens: int,
        response_format: Mapping[str, Any] | None = None,
        model: str | None = None,
    ) -> str:
        model_name = model or self._settings.chat_model_name()
        payload_messages = [
            {"role": str(message["role"]), "content": str(message["content"])}
            for message in messages
        ]
        if self._metrics:
            with self._metrics.track_timing("llm.request_duration", backend=self._backend):
                text = self._dispatch(
                    payload_messages, model_name, temperature, max_tokens, response_format
                )
        else:
            text = self._dispatch(payload_messages, model_name, temperature, max_tokens, response_format)
        if not text:
            logger.warning("llm.empty_response backend=%s model=%s", self._backend, model_name)
            raise LLMError(f"{self._backend} response did not include content")
        logger.info(
            "llm.success backend=%s model=%s chars=%s", self._backend, model_name, len(text)
        )
        return text

    def _dispatch(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Mapping[str, Any] | None,
    ) -> str:
        if self._backend == "openai":
            return self._invoke_openai(messages, model, temperature, max_tokens, response_format)
        if self._backend == "ollama":
            return self._invoke_ollama(messages, model, temperature, max_tokens, response_format)
        if self._backend == "mistral":
            url = f"{self._settings.mistral_base_url.rstrip('/')}/chat/completions"
            if not self._settings.mistral_api_key:
                raise LLMError("MISTRAL_API_KEY must be set for the Mistral chat backend")
            headers = {"Authorization": f"Bearer {self._settings.mistral_api_key}"}
        else:
            base_url = normalize_openai_compatible_base_url(self._settings.vllm_base_url)
            if not base_url:
                raise LLMError("VLLM_BASE_URL must be set for the vLLM chat backend")
            url = f"{base_url}/v1/chat/completions"
            headers = {}
            if self._settings.vllm_api_key:
                headers["Authorization"] = f"Bearer {self._settings.vllm_api_key}"
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": 1,
        }
        if response_format:
            payload["response_format"] = dict(response_format)
        return self._post_chat_completions(url, headers, payload)

    def _post_chat_completions(
        self, url: str, headers: dict[str, str], payload: dict[str, Any]
    ) -> str:
        try:
            response = httpx.post(url, json=payload, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except Exception as exc:
            logger.error("llm.request_failed backend=%s error=%s", self._backend, exc)
            raise LLMError(f"{self._backend} request failed: {exc}") from exc
        data = self._decode_json(response)
        for choice in data.get("choices") or []:
            message = choice.get("message") or {}
            content = message.get("content")
            if content:
                return str(content).strip()
        return ""

    def _decode_json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("llm.invalid_response backend=%s error=%s", self._backend, exc)
            raise LLMError(f"{self._backend} returned a non-JSON response") from exc
        if not isinstance(data, dict):
            logger.error("llm.invalid_response backend=%s type=%s", self._backend, type(data).__name__)
            raise LLMError(f"{self._backend} returned an unexpected response payload")
        return data

    def _invoke_ollama(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Mapping[str, Any] | None,
    ) -> str:
        url = f"{self._settings.ollama_base_url.rstrip('/')}/api/chat"
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if response_format and response_format.get("type") == "json_object":
            payload["format"] = "json"
        try:
            response = httpx.post(url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        except Exception as exc:
            logger.error("llm.request_failed backend=ollama model=%s error=%s", model, exc)
            raise LLMError(f"Ollama request failed: {exc}") from exc
        data = self._decode_json(response)
        message = data.get("message") or {}
        content = message.get("content") or data.get("response") or ""
        return str(content).strip()

    def _invoke_openai(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Mapping[str, Any] | None,
    ) -> str:
        client = self._get_openai_client()
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            kwargs["response_format"] = dict(response_format)
        try:
            response = client.chat.completions.create(**kwargs)
        except Exception as exc:
            logger.error("llm.request_failed backend=openai model=%s error=%s", model, exc)
            raise LLMError(f"OpenAI request failed: {exc}") from exc
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        content = getattr(choices[0].message, "content", None)
        return str(content).strip() if content else ""

    def _get_openai_client(self) -> Any:
        if self._openai_client is None:
            if OpenAI is None:  # pragma: no cover
                raise LLMError("openai package is not available")
            if not self._settings.openai_api_key:
                raise LLMError("OPENAI_API_KEY must be set for the OpenAI chat backend")
            self._openai_client = OpenAI(
                api_key=self._settings.openai_api_key, timeout=self._timeout
            )
        return self._openai_client


__all__ = ["ChatCompleter", "ChatCompletionClient", "LLMError", "Message"]
