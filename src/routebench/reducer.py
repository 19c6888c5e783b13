"""Metrics reducer: turn bucket statistics into reportable rows.

Pure functions only. A bucket with no observations reduces to a "no data" row
(every parameter NOT_FOUND, no percentages, no averages) rather than to zeros.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from routebench.aggregator import AggregateBucket, ParameterStats

if TYPE_CHECKING:
    from routebench.aggregator import ConsistencyAggregator


class ExtractionStatus(Enum):
    """How a parameter fared within one cell."""

    NOT_FOUND = "not_found"  # No observations at all for the cell
    NOT_EXTRACTED = "not_extracted"  # Observed, but never extracted
    EXTRACTED = "extracted"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (percentages are >= 0)."""
    return int(math.floor(value + 0.5))


def percentage(part: int, whole: int) -> int | None:
    if whole <= 0:
        return None
    return round_half_up(part / whole * 100)


def _mean(samples: Sequence[float]) -> int | None:
    if not samples:
        return None
    return round_half_up(sum(samples) / len(samples))


def most_frequent(counts: dict[str, int]) -> tuple[str | None, int]:
    """Most frequent key; ties go to the key inserted first."""
    best: str | None = None
    best_count = 0
    for value, count in counts.items():
        if count > best_count:
            best, best_count = value, count
    return best, best_count


@dataclass(frozen=True)
class EndpointMetrics:
    endpoint: str
    count: int
    match_pct: int

    def to_dict(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "count": self.count, "match_pct": self.match_pct}


@dataclass(frozen=True)
class ParameterMetrics:
    """Extraction rate and agreement for one parameter in one cell."""

    name: str
    status: ExtractionStatus
    extracted_count: int = 0
    extracted_pct: int | None = None
    consistency_pct: int | None = None
    most_common_value: str | None = None
    value_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "extracted_count": self.extracted_count,
            "extracted_pct": self.extracted_pct,
            "consistency_pct": self.consistency_pct,
            "most_common_value": self.most_common_value,
            "value_counts": dict(self.value_counts),
        }


@dataclass(frozen=True)
class MetricsRow:
    """Everything the report shows for one (prompt_version, provider) cell."""

    prompt_version: str
    provider: str
    iterations_seen: int
    iterations_expected: int
    error_count: int = 0
    endpoints: tuple[EndpointMetrics, ...] = ()
    most_common_endpoint: str | None = None
    endpoint_consistency_pct: int | None = None
    parameters: dict[str, ParameterMetrics] = field(default_factory=dict)
    avg_latency_ms: int | None = None
    avg_tokens_in: int | None = None
    avg_tokens_out: int | None = None
    avg_completion_pct: int | None = None

    @property
    def has_data(self) -> bool:
        return self.iterations_seen > 0

    def endpoint_match_pct(self, endpoint: str) -> int | None:
        """Share of iterations that selected ``endpoint``; None without data."""
        if not self.has_data:
            return None
        for item in self.endpoints:
            if item.endpoint == endpoint:
                return item.match_pct
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_version": self.prompt_version,
            "provider": self.provider,
            "iterations_seen": self.iterations_seen,
            "iterations_expected": self.iterations_expected,
            "error_count": self.error_count,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "most_common_endpoint": self.most_common_endpoint,
            "endpoint_consistency_pct": self.endpoint_consistency_pct,
            "parameters": {n: p.to_dict() for n, p in self.parameters.items()},
            "avg_latency_ms": self.avg_latency_ms,
            "avg_tokens_in": self.avg_tokens_in,
            "avg_tokens_out": self.avg_tokens_out,
            "avg_completion_pct": self.avg_completion_pct,
        }


def reduce_parameter(name: str, stats: ParameterStats, iterations_seen: int) -> ParameterMetrics:
    if iterations_seen == 0:
        return ParameterMetrics(name=name, status=ExtractionStatus.NOT_FOUND)
    if stats.extracted_count == 0:
        return ParameterMetrics(
            name=name,
            status=ExtractionStatus.NOT_EXTRACTED,
            extracted_pct=0,
        )
    value, count = most_frequent(stats.distinct_value_counts)
    return ParameterMetrics(
        name=name,
        status=ExtractionStatus.EXTRACTED,
        extracted_count=stats.extracted_count,
        extracted_pct=percentage(stats.extracted_count, iterations_seen),
        consistency_pct=percentage(count, stats.extracted_count),
        most_common_value=value,
        value_counts=dict(stats.distinct_value_counts),
    )


def reduce_bucket(bucket: AggregateBucket) -> MetricsRow:
    """Reduce one bucket to its metrics row. Never raises on partial data."""
    snap = bucket.snapshot()
    seen = snap.iterations_seen

    endpoints = tuple(
        EndpointMetrics(endpoint=name, count=count, match_pct=percentage(count, seen) or 0)
        for name, count in snap.endpoint_counts.items()
    )
    top_endpoint, top_count = most_frequent(snap.endpoint_counts)

    parameters = {
        name: reduce_parameter(name, snap.parameter_stats.get(name, ParameterStats()), seen)
        for name in snap.parameter_names
    }

    return MetricsRow(
        prompt_version=snap.prompt_version,
        provider=snap.provider,
        iterations_seen=seen,
        iterations_expected=snap.iterations_expected,
        error_count=snap.error_count,
        endpoints=endpoints,
        most_common_endpoint=top_endpoint,
        endpoint_consistency_pct=percentage(top_count, seen),
        parameters=parameters,
        avg_latency_ms=_mean(snap.latency_samples),
        avg_tokens_in=_mean(snap.tokens_in_samples),
        avg_tokens_out=_mean(snap.tokens_out_samples),
        avg_completion_pct=_mean(snap.completion_samples),
    )


def reduce_all(
    aggregator: ConsistencyAggregator,
    prompt_versions: Sequence[str],
    providers: Sequence[str],
) -> list[tuple[str, dict[str, MetricsRow]]]:
    """Rows for every configured cell, grouped by prompt version.

    Pairs that were never observed still get a row (with no data), so a
    cancelled or partial sweep renders the same table shape as a full one.
    """
    table: list[tuple[str, dict[str, MetricsRow]]] = []
    for prompt_version in prompt_versions:
        rows: dict[str, MetricsRow] = {}
        for provider in providers:
            bucket = aggregator.bucket(prompt_version, provider)
            if bucket is None:
                bucket = aggregator.new_bucket(prompt_version, provider)
            rows[provider] = reduce_bucket(bucket)
        table.append((prompt_version, rows))
    return table
