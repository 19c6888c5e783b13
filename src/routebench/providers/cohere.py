"""Cohere client over the v1 chat endpoint, using httpx directly."""

from __future__ import annotations

from typing import Any

import httpx

from routebench.errors import ProviderCallFailed
from routebench.logging import get_logger
from routebench.providers.base import (
    RETRYABLE_STATUS_CODES,
    ProviderReply,
    estimate_tokens,
    retry_with_backoff,
)

log = get_logger("routebench.providers.cohere")


def _is_retryable(error: Exception) -> bool:
    return (
        isinstance(error, httpx.HTTPStatusError)
        and error.response.status_code in RETRYABLE_STATUS_CODES
    )


def _usage(data: dict[str, Any]) -> tuple[int, int] | None:
    """Token usage from ``meta.tokens`` or ``meta.billed_units``, if reported."""
    meta = data.get("meta") or {}
    for section in ("tokens", "billed_units"):
        tokens = meta.get(section) or {}
        input_tokens = tokens.get("input_tokens")
        output_tokens = tokens.get("output_tokens")
        if isinstance(input_tokens, int | float) and isinstance(output_tokens, int | float):
            return int(input_tokens), int(output_tokens)
    return None


class CohereClient:
    """Posts the prompt as a single chat message with no history."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        name: str = "cohere",
        base_url: str = "https://api.cohere.ai/v1",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.name = name
        self._model = model
        self._url = f"{base_url.rstrip('/')}/chat"
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        log.info("provider_client_initialized", provider=name, model=model)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(self._url, json=payload)
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def generate(self, prompt: str) -> ProviderReply:
        payload = {
            "model": self._model,
            "message": prompt,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "chat_history": [],
        }
        try:
            data = await retry_with_backoff(
                lambda: self._post(payload),
                is_retryable=_is_retryable,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
                provider=self.name,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderCallFailed(
                self.name, f"HTTP {status}: {e.response.text[:200]}", status_code=status
            ) from e
        except httpx.RequestError as e:
            raise ProviderCallFailed(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise ProviderCallFailed(self.name, f"response is not JSON: {e}") from e

        # Missing text is passed on as empty so the billed usage is kept
        content = data.get("text")
        if not isinstance(content, str):
            content = ""

        usage = _usage(data)
        if usage is not None:
            return ProviderReply(content=content, tokens_in=usage[0], tokens_out=usage[1])
        return ProviderReply(
            content=content,
            tokens_in=estimate_tokens(prompt),
            tokens_out=estimate_tokens(content),
            tokens_estimated=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
