"""DeepSeek client over its OpenAI-compatible chat completions API."""

from __future__ import annotations

import openai

from routebench.errors import ProviderCallFailed
from routebench.logging import get_logger
from routebench.providers.base import (
    RETRYABLE_STATUS_CODES,
    ProviderReply,
    estimate_tokens,
    retry_with_backoff,
)

log = get_logger("routebench.providers.deepseek")


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    return isinstance(error, openai.APIStatusError) and error.status_code in RETRYABLE_STATUS_CODES


class DeepSeekClient:
    """Chat completion with the prompt as the only user message."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        name: str = "deepseek",
        base_url: str = "https://api.deepseek.com/v1",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self.name = name
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        log.info("provider_client_initialized", provider=name, model=model)

    async def generate(self, prompt: str) -> ProviderReply:
        try:
            response = await retry_with_backoff(
                lambda: self._client.chat.completions.create(
                    model=self._model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                ),
                is_retryable=_is_retryable,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
                provider=self.name,
            )
        except openai.APIStatusError as e:
            raise ProviderCallFailed(
                self.name, f"HTTP {e.status_code}: {e.message}", status_code=e.status_code
            ) from e
        except openai.APIError as e:
            raise ProviderCallFailed(self.name, f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise ProviderCallFailed(self.name, "no choices in response")
        # An empty reply still carries usage; the normalizer marks it malformed
        content = response.choices[0].message.content or ""

        usage = response.usage
        if usage is not None:
            return ProviderReply(
                content=content,
                tokens_in=usage.prompt_tokens,
                tokens_out=usage.completion_tokens,
            )
        return ProviderReply(
            content=content,
            tokens_in=estimate_tokens(prompt),
            tokens_out=estimate_tokens(content),
            tokens_estimated=True,
        )

    async def aclose(self) -> None:
        await self._client.close()
