"""Exception types and failure kinds for routebench.

Per-iteration failures are captured as data on a ``ResponseRecord`` (see
``ErrorKind``); only ``ConfigurationError`` is allowed to stop a sweep.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Failure categories recorded on a response record."""

    PROVIDER_CALL_FAILED = "provider_call_failed"  # network, timeout, non-2xx
    MALFORMED_REPLY = "malformed_reply"  # reply had no recognisable shape


class RouteBenchError(Exception):
    """Base class for all routebench errors."""


class ConfigurationError(RouteBenchError):
    """Invalid scenario or settings; fatal at startup."""


class ProviderCallFailed(RouteBenchError):
    """A provider client could not produce a reply."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class MalformedReply(RouteBenchError):
    """A raw reply could not be parsed into any recognisable shape."""


class ObservationRejected(RouteBenchError):
    """The aggregator refused a record."""

    def __init__(self, key: tuple[str, str, int], reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"{reason}: {key}")


class DuplicateObservation(ObservationRejected):
    """A record with an already-seen identity key was observed again."""

    def __init__(self, key: tuple[str, str, int]) -> None:
        super().__init__(key, "duplicate observation")
