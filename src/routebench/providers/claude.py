"""Claude client on the Anthropic Messages API."""

from __future__ import annotations

import anthropic

from routebench.errors import ProviderCallFailed
from routebench.logging import get_logger
from routebench.providers.base import (
    RETRYABLE_STATUS_CODES,
    ProviderReply,
    estimate_tokens,
    retry_with_backoff,
)

log = get_logger("routebench.providers.claude")


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, anthropic.RateLimitError):
        return True
    return (
        isinstance(error, anthropic.APIStatusError)
        and error.status_code in RETRYABLE_STATUS_CODES
    )


class ClaudeClient:
    """Sends a prompt as a single user message and returns the text reply."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        name: str = "claude",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_base_delay: float = 2.0,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.name = name
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        # SDK retries are disabled; backoff is handled here so it is logged
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key, timeout=timeout, max_retries=0
        )
        log.info("provider_client_initialized", provider=name, model=model)

    async def generate(self, prompt: str) -> ProviderReply:
        try:
            response = await retry_with_backoff(
                lambda: self._client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    temperature=self._temperature,
                    messages=[{"role": "user", "content": prompt}],
                ),
                is_retryable=_is_retryable,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
                provider=self.name,
            )
        except anthropic.APIStatusError as e:
            raise ProviderCallFailed(
                self.name, f"HTTP {e.status_code}: {e.message}", status_code=e.status_code
            ) from e
        except anthropic.APIError as e:
            raise ProviderCallFailed(self.name, f"{type(e).__name__}: {e}") from e

        # An empty reply still carries usage; the normalizer marks it malformed
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

        usage = getattr(response, "usage", None)
        if usage is not None:
            return ProviderReply(
                content=content,
                tokens_in=usage.input_tokens,
                tokens_out=usage.output_tokens,
            )
        return ProviderReply(
            content=content,
            tokens_in=estimate_tokens(prompt, 0.24),
            tokens_out=estimate_tokens(content, 0.24),
            tokens_estimated=True,
        )

    async def aclose(self) -> None:
        await self._client.close()
