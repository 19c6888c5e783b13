"""Map raw provider replies onto the canonical (endpoint, parameters) shape.

Providers return loosely structured text: bare JSON, JSON inside a markdown
fence, JSON surrounded by prose, or something else entirely. The normalizer
accepts all of these and never raises past its boundary; unusable replies come
back as records carrying a ``MALFORMED_REPLY`` error.

Extracted values are kept verbatim apart from whitespace trimming, so URLs
with encoded query strings compare by exact text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from routebench.constants import FALLBACK_ENDPOINT_LABELS, MAX_ERROR_MESSAGE_LENGTH
from routebench.errors import ErrorKind, MalformedReply
from routebench.logging import get_logger
from routebench.records import RecordError, ResponseRecord

log = get_logger("routebench.normalizer")

# Keys a reply may use for the selected endpoint, in lookup order
ENDPOINT_KEYS = ("endpoint_id", "endpoint", "matched_endpoint", "intent")

# Keys a reply may use for its parameter container, in lookup order
PARAMETER_CONTAINER_KEYS = ("parameters", "params", "extracted_parameters")

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_DECODER = json.JSONDecoder()


@dataclass(frozen=True)
class NormalizerCapabilities:
    """What a provider's replies can be mined for."""

    can_classify_endpoint: bool = True
    can_extract_parameters: bool = True


@dataclass(frozen=True)
class Extraction:
    """Canonical view of one raw reply."""

    matched_endpoint: str | None
    extracted_parameters: dict[str, str | None] = field(default_factory=dict)
    error: RecordError | None = None
    completion_pct: float | None = None


def _first_object(text: str) -> dict[str, Any] | None:
    """Decode the first complete JSON object in ``text``, ignoring what follows."""
    start = text.find("{")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def decode_json_object(text: str) -> Any:
    """Decode JSON from a response that may contain markdown or extra text.

    Fenced blocks are tried first, in order, then the whole text. Within each,
    the first decodable object wins and trailing prose (braces included) is
    ignored. Text with no object at all is handed to ``json.loads`` as is, so
    the caller sees either the decode error or a non-object value.
    """
    for block in _FENCED_BLOCK.findall(text):
        found = _first_object(block)
        if found is not None:
            return found
    found = _first_object(text)
    if found is not None:
        return found
    return json.loads(text.strip())


def _as_payload(raw: Any) -> dict[str, Any]:
    """Turn a raw reply into a JSON object or raise ``MalformedReply``."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise MalformedReply(f"unsupported reply type {type(raw).__name__}")
    if not raw.strip():
        raise MalformedReply("empty reply")
    try:
        data = decode_json_object(raw)
    except (json.JSONDecodeError, ValueError) as e:
        raise MalformedReply(f"reply is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedReply(f"expected a JSON object, got {type(data).__name__}")
    return data


def _literal(value: Any) -> str | None:
    """Render an extracted value as the literal string to compare on."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, ensure_ascii=False)


def _normalize_endpoint(value: Any) -> str | None:
    label = _literal(value)
    if label is None or label.lower() in FALLBACK_ENDPOINT_LABELS:
        return None
    return label


def _container_values(container: Any) -> dict[str, Any]:
    """Flatten a parameter container (mapping or list of name/value pairs)."""
    if isinstance(container, Mapping):
        return dict(container)
    values: dict[str, Any] = {}
    if isinstance(container, Sequence) and not isinstance(container, str):
        for item in container:
            if isinstance(item, Mapping) and isinstance(item.get("name"), str):
                # First occurrence wins
                values.setdefault(item["name"], item.get("value"))
    return values


class ExtractionNormalizer:
    """Classifies replies into an endpoint label and a parameter map."""

    def __init__(
        self,
        expected_parameter_names: Sequence[str],
        capabilities: NormalizerCapabilities | None = None,
        endpoint_parameters: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._expected = tuple(expected_parameter_names)
        self._capabilities = capabilities or NormalizerCapabilities()
        # Endpoint id -> parameter names it takes, for completion scoring
        self._endpoint_parameters = {
            endpoint: tuple(names) for endpoint, names in (endpoint_parameters or {}).items()
        }

    @property
    def expected_parameter_names(self) -> tuple[str, ...]:
        return self._expected

    @property
    def capabilities(self) -> NormalizerCapabilities:
        return self._capabilities

    def _empty_parameters(self) -> dict[str, str | None]:
        return {name: None for name in self._expected}

    def completion_pct(
        self, matched_endpoint: str | None, parameters: Mapping[str, str | None]
    ) -> float | None:
        """Percentage of the matched endpoint's parameters that were extracted.

        None when nothing matched or the endpoint is not in the catalogue; an
        endpoint that takes no parameters is always complete.
        """
        if matched_endpoint is None or matched_endpoint not in self._endpoint_parameters:
            return None
        required = self._endpoint_parameters[matched_endpoint]
        if not required:
            return 100.0
        present = sum(1 for name in required if parameters.get(name) is not None)
        return present / len(required) * 100

    def extract(self, raw: Any) -> Extraction:
        """Normalize a raw reply. Never raises."""
        try:
            payload = _as_payload(raw)
            return self._extract_payload(payload)
        except MalformedReply as e:
            log.debug("malformed_reply", error=str(e))
            return Extraction(
                matched_endpoint=None,
                extracted_parameters=self._empty_parameters(),
                error=RecordError(
                    ErrorKind.MALFORMED_REPLY, str(e)[:MAX_ERROR_MESSAGE_LENGTH]
                ),
            )

    def _extract_payload(self, payload: dict[str, Any]) -> Extraction:
        endpoint_key = next((k for k in ENDPOINT_KEYS if k in payload), None)
        container_key = next((k for k in PARAMETER_CONTAINER_KEYS if k in payload), None)
        top_level = [name for name in self._expected if name in payload]

        if endpoint_key is None and container_key is None and not top_level:
            raise MalformedReply(
                f"no endpoint or parameters in reply (keys: {sorted(payload)[:10]})"
            )

        matched_endpoint = None
        if endpoint_key is not None and self._capabilities.can_classify_endpoint:
            matched_endpoint = _normalize_endpoint(payload[endpoint_key])

        parameters = self._empty_parameters()
        if self._capabilities.can_extract_parameters:
            found = _container_values(payload[container_key]) if container_key else {}
            for name in top_level:
                found.setdefault(name, payload[name])
            for name in self._expected:
                if name in found:
                    parameters[name] = _literal(found[name])

        return Extraction(
            matched_endpoint=matched_endpoint,
            extracted_parameters=parameters,
            completion_pct=self.completion_pct(matched_endpoint, parameters),
        )

    def to_record(
        self,
        raw: Any,
        *,
        prompt_version: str,
        provider: str,
        iteration_index: int,
        latency_ms: int | None = None,
        tokens_in: int | None = None,
        tokens_out: int | None = None,
    ) -> ResponseRecord:
        """Build the full response record for one reply."""
        extraction = self.extract(raw)
        return ResponseRecord(
            prompt_version=prompt_version,
            provider=provider,
            iteration_index=iteration_index,
            matched_endpoint=extraction.matched_endpoint,
            extracted_parameters=extraction.extracted_parameters,
            latency_ms=latency_ms,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            error=extraction.error,
            completion_pct=extraction.completion_pct,
        )

    def failure_record(
        self,
        message: str,
        *,
        prompt_version: str,
        provider: str,
        iteration_index: int,
        latency_ms: int | None = None,
    ) -> ResponseRecord:
        """Record for a call that produced no reply at all."""
        return ResponseRecord(
            prompt_version=prompt_version,
            provider=provider,
            iteration_index=iteration_index,
            matched_endpoint=None,
            extracted_parameters=self._empty_parameters(),
            latency_ms=latency_ms,
            error=RecordError(
                ErrorKind.PROVIDER_CALL_FAILED, message[:MAX_ERROR_MESSAGE_LENGTH]
            ),
        )
