"""Sweep controller: drives iterations x prompt versions x providers.

Every provider call becomes exactly one ``ResponseRecord``, success or not,
and is handed to the aggregator as soon as it completes. A failed call never
stops the sweep; only configuration problems do, and they are raised before
the first request is sent.

Calls fan out on the event loop, bounded by a semaphore. If the sweep is
cancelled part way, the aggregator keeps everything observed so far and can
still be reduced (or checkpointed and resumed later).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping

from routebench.aggregator import ConsistencyAggregator
from routebench.errors import ConfigurationError, ProviderCallFailed
from routebench.logging import get_logger
from routebench.normalizer import ExtractionNormalizer, NormalizerCapabilities
from routebench.prompts import PromptStore
from routebench.providers.base import ProviderClient, ProviderReply
from routebench.records import RecordKey, ResponseRecord
from routebench.scenario import Scenario
from routebench.utils import timed_operation

log = get_logger("routebench.sweep")

# Log progress every N completed calls
PROGRESS_LOG_INTERVAL = 5


class SweepController:
    """Runs one scenario against a set of provider clients."""

    def __init__(
        self,
        scenario: Scenario,
        clients: Mapping[str, ProviderClient],
        *,
        prompts: PromptStore | None = None,
        aggregator: ConsistencyAggregator | None = None,
        capabilities: Mapping[str, NormalizerCapabilities] | None = None,
        max_concurrency: int = 4,
        call_timeout: float = 60.0,
        request_delay: float = 0.0,
        on_record: Callable[[ResponseRecord], None] | None = None,
    ) -> None:
        """Validate the configuration and prepare the sweep.

        Args:
            scenario: What to send and how often.
            clients: Provider id -> client; must cover every scenario provider.
            prompts: Template store; defaults to the built-in versions.
            aggregator: Existing aggregator to resume into.
            capabilities: Per-provider normalizer capabilities (default: all).
            max_concurrency: Maximum provider calls in flight.
            call_timeout: Seconds before a single call counts as failed.
            request_delay: Pause after each call while holding its slot.
            on_record: Called with every record after it is observed.

        Raises:
            ConfigurationError: If the sweep cannot run as configured.
        """
        scenario.validate()
        if max_concurrency <= 0:
            raise ConfigurationError(f"max_concurrency must be positive, got {max_concurrency}")
        if call_timeout <= 0:
            raise ConfigurationError(f"call_timeout must be positive, got {call_timeout}")

        missing = [p for p in scenario.providers if p not in clients]
        if missing:
            raise ConfigurationError(f"no client configured for provider(s) {missing}")

        self._prompts = prompts or PromptStore()
        self._prompts.require(scenario.prompt_versions)

        if aggregator is None:
            aggregator = ConsistencyAggregator(
                scenario.expected_parameter_names, scenario.iterations_per_config
            )
        elif (
            aggregator.iterations_per_config != scenario.iterations_per_config
            or aggregator.expected_parameter_names != tuple(scenario.expected_parameter_names)
        ):
            raise ConfigurationError(
                "aggregator does not match the scenario "
                "(iterations_per_config or expected_parameter_names differ)"
            )

        self._scenario = scenario
        self._clients = dict(clients)
        self._aggregator = aggregator
        capabilities = capabilities or {}
        endpoint_parameters = {e.id: e.parameters for e in scenario.endpoints}
        self._normalizers = {
            provider: ExtractionNormalizer(
                scenario.expected_parameter_names,
                capabilities.get(provider),
                endpoint_parameters=endpoint_parameters,
            )
            for provider in scenario.providers
        }
        self._max_concurrency = max_concurrency
        self._call_timeout = call_timeout
        self._request_delay = request_delay
        self._on_record = on_record
        self._completed = 0

    @property
    def aggregator(self) -> ConsistencyAggregator:
        return self._aggregator

    @property
    def completed(self) -> int:
        """Calls finished in this run (not counting resumed ones)."""
        return self._completed

    def pending_keys(self) -> list[RecordKey]:
        """Identity keys still to run, in prompt -> provider -> iteration order."""
        return [
            (prompt_version, provider, index)
            for prompt_version in self._scenario.prompt_versions
            for provider in self._scenario.providers
            for index in range(self._scenario.iterations_per_config)
            if not self._aggregator.has_observed((prompt_version, provider, index))
        ]

    async def run(self) -> ConsistencyAggregator:
        """Execute every pending call and return the aggregator."""
        pending = self.pending_keys()
        rendered = {
            version: self._prompts.render(version, self._scenario)
            for version in self._scenario.prompt_versions
        }
        total = self._scenario.total_calls
        log.info(
            "sweep_started",
            providers=self._scenario.providers,
            prompt_versions=self._scenario.prompt_versions,
            iterations=self._scenario.iterations_per_config,
            pending=len(pending),
            resumed=total - len(pending),
        )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def worker(key: RecordKey) -> None:
            async with semaphore:
                await self.run_iteration(key, rendered[key[0]])
                if self._request_delay:
                    await asyncio.sleep(self._request_delay)

        try:
            await asyncio.gather(*(worker(key) for key in pending))
        except asyncio.CancelledError:
            log.warning(
                "sweep_cancelled",
                completed=self._completed,
                remaining=len(pending) - self._completed,
            )
            raise

        log.info("sweep_completed", calls=self._completed, rejected=self._aggregator.rejected_count)
        return self._aggregator

    async def run_iteration(self, key: RecordKey, prompt: str) -> ResponseRecord:
        """Make one provider call and fold its record into the aggregator."""
        prompt_version, provider, index = key
        client = self._clients[provider]
        normalizer = self._normalizers[provider]

        reply: ProviderReply | None = None
        failure: str | None = None
        async with timed_operation(
            "provider_call",
            log=log,
            provider=provider,
            prompt_version=prompt_version,
            iteration=index,
        ) as timing:
            try:
                reply = await asyncio.wait_for(client.generate(prompt), self._call_timeout)
            except ProviderCallFailed as e:
                failure = str(e)
            except TimeoutError:
                failure = f"{provider}: timed out after {self._call_timeout}s"
            except Exception as e:
                # A client bug still counts as one failed iteration
                log.exception("provider_client_error", provider=provider)
                failure = f"{provider}: {type(e).__name__}: {e}"

        if reply is None:
            log.warning(
                "provider_call_failed",
                provider=provider,
                prompt_version=prompt_version,
                iteration=index,
                error=failure,
            )
            record = normalizer.failure_record(
                failure or "unknown failure",
                prompt_version=prompt_version,
                provider=provider,
                iteration_index=index,
                latency_ms=timing["elapsed_ms"],
            )
        else:
            record = normalizer.to_record(
                reply.content,
                prompt_version=prompt_version,
                provider=provider,
                iteration_index=index,
                latency_ms=timing["elapsed_ms"],
                tokens_in=reply.tokens_in,
                tokens_out=reply.tokens_out,
            )
            if record.error is not None:
                log.warning(
                    "malformed_reply_recorded",
                    provider=provider,
                    prompt_version=prompt_version,
                    iteration=index,
                    error=record.error.message,
                )

        self._aggregator.observe(record)
        if self._on_record is not None:
            self._on_record(record)

        self._completed += 1
        if self._completed % PROGRESS_LOG_INTERVAL == 0:
            log.info("sweep_progress", completed=self._completed)
        return record
