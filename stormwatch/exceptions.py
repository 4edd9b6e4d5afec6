"""
Error taxonomy for STORMWATCH.

Ingestion errors (FetchError and subclasses) are absorbed by the
orchestrator. PredictionUnavailable and NotFound reach the caller.
"""
from typing import Optional


class StormwatchError(Exception):
    """Base class for all STORMWATCH errors."""
    pass


class FetchError(StormwatchError):
    """An upstream feed could not produce a snapshot."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UpstreamUnavailable(FetchError):
    """Network or HTTP failure talking to an upstream feed."""
    pass


class UpstreamFormatError(FetchError):
    """Upstream answered but the payload could not be parsed."""
    pass


class PredictionUnavailable(StormwatchError):
    """The forecast oracle failed or returned unusable content."""
    pass


class NotFound(StormwatchError):
    """Unknown entity or forecast id."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class FallbackSynthesisError(StormwatchError):
    """Defect while building fallback entities from the secondary source."""
    pass


class CircuitOpenError(StormwatchError):
    """Raised when a circuit breaker is open."""
    pass
