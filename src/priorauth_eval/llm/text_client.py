"""HTTP chat client for the letter generation endpoint."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional

import httpx

from priorauth_eval.config import EvaluatorConfig
from priorauth_eval.llm.payloads import NormalizedResponse, ResponseShape, normalize_response

logger = logging.getLogger(__name__)


class LLMGenerationError(RuntimeError):
    """Raised when the generation endpoint cannot return an answer."""


class LLMTimeoutError(LLMGenerationError):
    """Raised when the endpoint does not answer before the caller's timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"generation endpoint timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


@dataclass
class ChatReply:
    text: str
    model: str
    shape: ResponseShape
    latency_ms: int


class TextLLMClient:
    """Thread-safe helper around ``httpx`` for chat-style text endpoints."""

    def __init__(
        self,
        config: EvaluatorConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self._config = config
        self._transport = transport
        self._retry_backoff_seconds = retry_backoff_seconds
        self._client: Optional[httpx.Client] = None
        self._lock = Lock()

    @property
    def model(self) -> str:
        return self._config.model

    def chat(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 256,
        timeout_seconds: Optional[float] = None,
        retry: bool = True,
    ) -> ChatReply:
        """Send one non-streaming chat request and normalize whatever shape comes back.

        ``timeout_seconds`` bounds the whole call, including the single 5xx retry
        that ``retry`` allows.
        """
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        body: Dict[str, Any] = {
            "model": self._config.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max(1, max_tokens),
            },
        }
        timeout = timeout_seconds if timeout_seconds is not None else self._config.generation_timeout_seconds

        start = time.perf_counter()
        response = self._post(body, timeout, retry=retry)
        latency_ms = int((time.perf_counter() - start) * 1000)

        try:
            payload = response.json()
        except ValueError as exc:
            raise LLMGenerationError(f"generation endpoint returned invalid JSON: {exc}") from exc

        normalized: NormalizedResponse = normalize_response(payload)
        if normalized.shape is ResponseShape.UNKNOWN:
            logger.warning("Generation endpoint returned an unrecognized payload shape")
        return ChatReply(
            text=normalized.resolve_text(),
            model=normalized.model or self._config.model,
            shape=normalized.shape,
            latency_ms=latency_ms,
        )

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatReply:
        """Generate a letter; an empty body is an error."""
        reply = self.chat(
            prompt,
            system=system,
            temperature=self._config.generation_temperature if temperature is None else temperature,
            max_tokens=self._config.generation_max_tokens if max_tokens is None else max_tokens,
            timeout_seconds=self._config.generation_timeout_seconds,
        )
        if not reply.text:
            raise LLMGenerationError("generation endpoint returned empty content")
        return reply

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _post(self, body: Dict[str, Any], timeout: float, *, retry: bool = True) -> httpx.Response:
        # One deadline bounds every attempt and the backoff between them.
        deadline = time.monotonic() + timeout
        attempts = 2 if retry else 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LLMTimeoutError(timeout)
            client = self._get_client()
            try:
                response = client.post(self._config.llm_url, json=body, timeout=remaining)
            except httpx.TimeoutException as exc:
                logger.error("Generation request timed out after %ss (attempt %s)", timeout, attempt + 1)
                raise LLMTimeoutError(timeout) from exc
            except httpx.HTTPError as exc:
                logger.error("Generation request failed (attempt %s): %s", attempt + 1, exc)
                raise LLMGenerationError(str(exc)) from exc

            if response.is_success:
                return response

            detail = response.text[:500]
            last_error = LLMGenerationError(f"generation endpoint returned HTTP {response.status_code}: {detail}")
            logger.error(
                "Generation request failed (status %s, attempt %s): %s",
                response.status_code,
                attempt + 1,
                detail,
            )
            if attempt + 1 < attempts and response.status_code >= 500:
                if deadline - time.monotonic() <= self._retry_backoff_seconds:
                    logger.warning("Skipping retry; no time left before the %ss deadline", timeout)
                    break
                self._reset_client()
                if self._retry_backoff_seconds > 0:
                    time.sleep(self._retry_backoff_seconds)
                continue
            break

        raise last_error or LLMGenerationError("generation endpoint unavailable")

    def _get_client(self) -> httpx.Client:
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(transport=self._transport)
                logger.debug("Initialized HTTP client for %s", self._config.llm_url)
        return self._client

    def _reset_client(self) -> None:
        with self._lock:
            if self._client is not None:
                try:
                    self._client.close()
                except Exception:  # pragma: no cover - optional cleanup
                    logger.debug("Error while closing HTTP client", exc_info=True)
            self._client = None
