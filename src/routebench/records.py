"""The response record: one immutable observation per sweep iteration.

A record's identity is the (prompt_version, provider, iteration_index) triple.
All records are plain dataclasses with to_dict/from_dict for checkpoints and
JSON reports.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from routebench.errors import ErrorKind

RecordKey = tuple[str, str, int]


@dataclass(frozen=True)
class RecordError:
    """Failure descriptor attached to a record."""

    kind: ErrorKind
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecordError:
        return cls(kind=ErrorKind(data["kind"]), message=data.get("message", ""))


@dataclass(frozen=True)
class ResponseRecord:
    """What one provider returned for one iteration of one prompt version."""

    prompt_version: str
    provider: str
    iteration_index: int
    matched_endpoint: str | None = None
    extracted_parameters: Mapping[str, str | None] = field(default_factory=dict)
    latency_ms: int | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    error: RecordError | None = None
    # Share of the matched endpoint's parameters that were extracted, 0-100
    completion_pct: float | None = None

    def __post_init__(self) -> None:
        if self.iteration_index < 0:
            raise ValueError(f"iteration_index must be >= 0, got {self.iteration_index}")
        for name in ("latency_ms", "tokens_in", "tokens_out"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.completion_pct is not None and not 0 <= self.completion_pct <= 100:
            raise ValueError(f"completion_pct must be within 0..100, got {self.completion_pct}")
        # Freeze the parameter mapping so the record stays immutable
        object.__setattr__(
            self,
            "extracted_parameters",
            MappingProxyType(dict(self.extracted_parameters)),
        )

    @property
    def key(self) -> RecordKey:
        """Identity key of this record."""
        return (self.prompt_version, self.provider, self.iteration_index)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_version": self.prompt_version,
            "provider": self.provider,
            "iteration_index": self.iteration_index,
            "matched_endpoint": self.matched_endpoint,
            "extracted_parameters": dict(self.extracted_parameters),
            "latency_ms": self.latency_ms,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "error": self.error.to_dict() if self.error else None,
            "completion_pct": self.completion_pct,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResponseRecord:
        error = data.get("error")
        return cls(
            prompt_version=data["prompt_version"],
            provider=data["provider"],
            iteration_index=int(data["iteration_index"]),
            matched_endpoint=data.get("matched_endpoint"),
            extracted_parameters=data.get("extracted_parameters") or {},
            latency_ms=data.get("latency_ms"),
            tokens_in=data.get("tokens_in"),
            tokens_out=data.get("tokens_out"),
            error=RecordError.from_dict(error) if error else None,
            completion_pct=data.get("completion_pct"),
        )
