"""Consistency aggregator: folds response records into per-cell statistics.

Each (prompt_version, provider) pair owns one ``AggregateBucket``. Buckets are
independent of each other; a record only ever touches the bucket for its own
pair, under that bucket's lock. Buckets are created lazily on first
observation.

Invariants kept by every bucket:

- ``iterations_seen <= iterations_expected``
- ``sum(endpoint_counts.values()) == iterations_seen``
- per parameter, ``extracted_count == sum(distinct_value_counts.values())``
  and ``extracted_count <= iterations_seen``
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from routebench.constants import BUCKET_KEY_SEPARATOR, NO_MATCH_ENDPOINT
from routebench.errors import (
    ConfigurationError,
    DuplicateObservation,
    ObservationRejected,
)
from routebench.logging import get_logger
from routebench.records import RecordKey, ResponseRecord

if TYPE_CHECKING:
    from routebench.reducer import MetricsRow

log = get_logger("routebench.aggregator")

CHECKPOINT_FORMAT_VERSION = 1

BucketKey = tuple[str, str]


def bucket_key_to_str(key: BucketKey) -> str:
    """Checkpoint form of a bucket key: ``"prompt_version\\x1fprovider"``."""
    return BUCKET_KEY_SEPARATOR.join(key)


def bucket_key_from_str(value: str) -> BucketKey:
    prompt_version, sep, provider = value.partition(BUCKET_KEY_SEPARATOR)
    if not sep:
        raise ValueError(f"malformed bucket key: {value!r}")
    return (prompt_version, provider)


@dataclass
class ParameterStats:
    """Extraction tally for one expected parameter within one bucket."""

    extracted_count: int = 0
    # Insertion order is first-observation order, used for tie-breaks
    distinct_value_counts: dict[str, int] = field(default_factory=dict)

    def record(self, value: str) -> None:
        self.extracted_count += 1
        self.distinct_value_counts[value] = self.distinct_value_counts.get(value, 0) + 1

    def not_extracted_count(self, iterations_seen: int) -> int:
        return iterations_seen - self.extracted_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "extracted_count": self.extracted_count,
            # List of pairs keeps first-observation order through JSON
            "distinct_value_counts": [[v, c] for v, c in self.distinct_value_counts.items()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParameterStats:
        return cls(
            extracted_count=int(data.get("extracted_count", 0)),
            distinct_value_counts={v: int(c) for v, c in data.get("distinct_value_counts", [])},
        )


@dataclass
class AggregateBucket:
    """Running statistics for one (prompt_version, provider) pair."""

    prompt_version: str
    provider: str
    iterations_expected: int
    parameter_names: tuple[str, ...] = ()
    endpoint_counts: dict[str, int] = field(default_factory=dict)
    parameter_stats: dict[str, ParameterStats] = field(default_factory=dict)
    latency_samples: list[int] = field(default_factory=list)
    tokens_in_samples: list[int] = field(default_factory=list)
    tokens_out_samples: list[int] = field(default_factory=list)
    completion_samples: list[float] = field(default_factory=list)
    iterations_seen: int = 0
    seen_iterations: set[int] = field(default_factory=set)
    error_counts: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.parameter_names = tuple(self.parameter_names)
        for name in self.parameter_names:
            self.parameter_stats.setdefault(name, ParameterStats())

    @property
    def key(self) -> BucketKey:
        return (self.prompt_version, self.provider)

    @property
    def is_complete(self) -> bool:
        return self.iterations_seen == self.iterations_expected

    @property
    def error_count(self) -> int:
        return sum(self.error_counts.values())

    def add(self, record: ResponseRecord) -> None:
        """Fold one record in.

        Raises:
            DuplicateObservation: The record's identity key was already seen.
            ObservationRejected: The record does not belong in this bucket.
        """
        if (record.prompt_version, record.provider) != self.key:
            raise ObservationRejected(record.key, "record belongs to another bucket")
        if not 0 <= record.iteration_index < self.iterations_expected:
            raise ObservationRejected(
                record.key,
                f"iteration index outside 0..{self.iterations_expected - 1}",
            )

        with self._lock:
            if record.iteration_index in self.seen_iterations:
                raise DuplicateObservation(record.key)

            self.seen_iterations.add(record.iteration_index)
            self.iterations_seen += 1

            endpoint = record.matched_endpoint or NO_MATCH_ENDPOINT
            self.endpoint_counts[endpoint] = self.endpoint_counts.get(endpoint, 0) + 1

            for name in self.parameter_names:
                value = record.extracted_parameters.get(name)
                if value is not None:
                    self.parameter_stats[name].record(value)

            # Failed calls still contribute whatever was measured
            if record.latency_ms is not None:
                self.latency_samples.append(record.latency_ms)
            if record.tokens_in is not None:
                self.tokens_in_samples.append(record.tokens_in)
            if record.tokens_out is not None:
                self.tokens_out_samples.append(record.tokens_out)
            if record.completion_pct is not None:
                self.completion_samples.append(record.completion_pct)

            if record.error is not None:
                kind = record.error.kind.value
                self.error_counts[kind] = self.error_counts.get(kind, 0) + 1

    def has_seen(self, iteration_index: int) -> bool:
        with self._lock:
            return iteration_index in self.seen_iterations

    def snapshot(self) -> AggregateBucket:
        """A consistent copy, safe to read while observations continue."""
        with self._lock:
            return AggregateBucket.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_version": self.prompt_version,
            "provider": self.provider,
            "iterations_expected": self.iterations_expected,
            "parameter_names": list(self.parameter_names),
            "endpoint_counts": [[e, c] for e, c in self.endpoint_counts.items()],
            "parameter_stats": {n: s.to_dict() for n, s in self.parameter_stats.items()},
            "latency_samples": list(self.latency_samples),
            "tokens_in_samples": list(self.tokens_in_samples),
            "tokens_out_samples": list(self.tokens_out_samples),
            "completion_samples": list(self.completion_samples),
            "iterations_seen": self.iterations_seen,
            "seen_iterations": sorted(self.seen_iterations),
            "error_counts": dict(self.error_counts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AggregateBucket:
        return cls(
            prompt_version=data["prompt_version"],
            provider=data["provider"],
            iterations_expected=int(data["iterations_expected"]),
            parameter_names=tuple(data.get("parameter_names", [])),
            endpoint_counts={e: int(c) for e, c in data.get("endpoint_counts", [])},
            parameter_stats={
                n: ParameterStats.from_dict(s) for n, s in data.get("parameter_stats", {}).items()
            },
            latency_samples=list(data.get("latency_samples", [])),
            tokens_in_samples=list(data.get("tokens_in_samples", [])),
            tokens_out_samples=list(data.get("tokens_out_samples", [])),
            completion_samples=[float(v) for v in data.get("completion_samples", [])],
            iterations_seen=int(data.get("iterations_seen", 0)),
            seen_iterations=set(data.get("seen_iterations", [])),
            error_counts=dict(data.get("error_counts", {})),
        )


class ConsistencyAggregator:
    """Owns every bucket of one sweep.

    ``observe`` is safe to call from concurrent tasks or threads: buckets are
    created under a registry lock and mutated under their own lock, so there
    is no contention between different (prompt_version, provider) pairs.
    """

    def __init__(
        self,
        expected_parameter_names: Sequence[str],
        iterations_per_config: int,
    ) -> None:
        if iterations_per_config <= 0:
            raise ConfigurationError(
                f"iterations_per_config must be positive, got {iterations_per_config}"
            )
        self._parameter_names = tuple(expected_parameter_names)
        self._iterations = iterations_per_config
        self._buckets: dict[BucketKey, AggregateBucket] = {}
        self._registry_lock = threading.Lock()
        self._rejected = 0

    @property
    def expected_parameter_names(self) -> tuple[str, ...]:
        return self._parameter_names

    @property
    def iterations_per_config(self) -> int:
        return self._iterations

    @property
    def rejected_count(self) -> int:
        """Number of records refused so far (duplicates included)."""
        return self._rejected

    def new_bucket(self, prompt_version: str, provider: str) -> AggregateBucket:
        """An empty bucket shaped for this aggregator, not registered."""
        return AggregateBucket(
            prompt_version=prompt_version,
            provider=provider,
            iterations_expected=self._iterations,
            parameter_names=self._parameter_names,
        )

    def _bucket_for(self, key: BucketKey) -> AggregateBucket:
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self.new_bucket(*key)
                self._buckets[key] = bucket
                log.debug("bucket_created", prompt_version=key[0], provider=key[1])
            return bucket

    def observe(self, record: ResponseRecord) -> bool:
        """Fold a record into its bucket.

        Returns:
            True if the record was counted, False if it was rejected
            (duplicate identity key or out-of-range iteration index).
        """
        if not 0 <= record.iteration_index < self._iterations:
            # A rejected record must not create a bucket
            self._count_rejection()
            log.warning(
                "observation_rejected",
                prompt_version=record.prompt_version,
                provider=record.provider,
                iteration_index=record.iteration_index,
                reason=f"iteration index outside 0..{self._iterations - 1}",
            )
            return False

        bucket = self._bucket_for((record.prompt_version, record.provider))
        try:
            bucket.add(record)
        except DuplicateObservation:
            self._count_rejection()
            log.warning(
                "duplicate_observation_rejected",
                prompt_version=record.prompt_version,
                provider=record.provider,
                iteration_index=record.iteration_index,
            )
            return False
        except ObservationRejected as e:
            self._count_rejection()
            log.warning(
                "observation_rejected",
                prompt_version=record.prompt_version,
                provider=record.provider,
                iteration_index=record.iteration_index,
                reason=e.reason,
            )
            return False
        return True

    def _count_rejection(self) -> None:
        with self._registry_lock:
            self._rejected += 1

    def bucket(self, prompt_version: str, provider: str) -> AggregateBucket | None:
        with self._registry_lock:
            return self._buckets.get((prompt_version, provider))

    def buckets(self) -> Iterator[AggregateBucket]:
        with self._registry_lock:
            current = list(self._buckets.values())
        yield from current

    def has_observed(self, key: RecordKey) -> bool:
        bucket = self.bucket(key[0], key[1])
        return bucket is not None and bucket.has_seen(key[2])

    def reduce_all(
        self,
        prompt_versions: Sequence[str],
        providers: Sequence[str],
    ) -> list[tuple[str, dict[str, MetricsRow]]]:
        """Metrics for every configured cell, in configuration order."""
        from routebench.reducer import reduce_all

        return reduce_all(self, prompt_versions, providers)

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": CHECKPOINT_FORMAT_VERSION,
            "expected_parameter_names": list(self._parameter_names),
            "iterations_per_config": self._iterations,
            "buckets": {
                bucket_key_to_str(b.key): b.snapshot().to_dict() for b in self.buckets()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsistencyAggregator:
        if data.get("format_version") != CHECKPOINT_FORMAT_VERSION:
            raise ConfigurationError(
                f"unsupported checkpoint format: {data.get('format_version')!r}"
            )
        aggregator = cls(
            expected_parameter_names=data.get("expected_parameter_names", []),
            iterations_per_config=int(data["iterations_per_config"]),
        )
        for key_str, bucket_data in data.get("buckets", {}).items():
            bucket = AggregateBucket.from_dict(bucket_data)
            if bucket_key_from_str(key_str) != bucket.key:
                raise ConfigurationError(f"checkpoint key mismatch for {key_str!r}")
            aggregator._check_restored(key_str, bucket)
            aggregator._buckets[bucket.key] = bucket
        return aggregator

    def _check_restored(self, key_str: str, bucket: AggregateBucket) -> None:
        """Refuse a restored bucket whose shape disagrees with this aggregator."""
        if bucket.iterations_expected != self._iterations:
            raise ConfigurationError(
                f"checkpoint bucket {key_str!r} expects {bucket.iterations_expected} "
                f"iterations, aggregator expects {self._iterations}"
            )
        if bucket.parameter_names != self._parameter_names:
            raise ConfigurationError(
                f"checkpoint bucket {key_str!r} tracks parameters "
                f"{list(bucket.parameter_names)}, aggregator tracks {list(self._parameter_names)}"
            )
        if any(not 0 <= i < self._iterations for i in bucket.seen_iterations):
            raise ConfigurationError(f"checkpoint bucket {key_str!r} has out-of-range iterations")
        if bucket.iterations_seen != len(bucket.seen_iterations):
            raise ConfigurationError(
                f"checkpoint bucket {key_str!r} counts {bucket.iterations_seen} iterations "
                f"but lists {len(bucket.seen_iterations)}"
            )

    def save_checkpoint(self, path: str | Path) -> None:
        """Write the bucket set to ``path`` as JSON."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(target)
        log.info("checkpoint_saved", path=str(target), buckets=len(self._buckets))

    @classmethod
    def load_checkpoint(cls, path: str | Path) -> ConsistencyAggregator:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read checkpoint {path}: {e}") from e
        try:
            aggregator = cls.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid checkpoint {path}: {e}") from e
        log.info("checkpoint_loaded", path=str(path), buckets=len(aggregator._buckets))
        return aggregator
