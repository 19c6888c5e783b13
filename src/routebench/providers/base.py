"""Provider client protocol and helpers shared by the concrete clients."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from routebench.constants import DEFAULT_CHARS_PER_TOKEN_RATE
from routebench.logging import get_logger

log = get_logger("routebench.providers")

T = TypeVar("T")

# HTTP statuses worth retrying: rate limited, unavailable, overloaded
RETRYABLE_STATUS_CODES = frozenset({429, 503, 529})


@dataclass(frozen=True)
class ProviderReply:
    """Raw text returned by a provider plus its token usage."""

    content: str
    tokens_in: int
    tokens_out: int
    tokens_estimated: bool = False


class ProviderClient(Protocol):
    """Anything that can turn a prompt into a ``ProviderReply``.

    Implementations raise ``ProviderCallFailed`` for every failure.
    """

    name: str

    async def generate(self, prompt: str) -> ProviderReply: ...

    async def aclose(self) -> None: ...


def estimate_tokens(text: str, rate: float = DEFAULT_CHARS_PER_TOKEN_RATE) -> int:
    """Rough token count for APIs that do not report usage."""
    return math.ceil(len(text) * rate)


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[Exception], bool],
    max_retries: int,
    base_delay: float,
    provider: str,
) -> T:
    """Retry an async operation with exponential backoff on transient errors.

    ``call`` is a zero-arg callable that returns a new awaitable each time.
    Non-retryable errors, and the last retryable one, propagate unchanged.
    """
    for attempt in range(max_retries + 1):
        try:
            return await call()
        except Exception as e:
            if not is_retryable(e) or attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            log.info(
                "provider_call_retry",
                provider=provider,
                attempt=attempt + 1,
                delay_seconds=delay,
                error=str(e)[:200],
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
