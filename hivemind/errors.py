"""Error taxonomy for the quotation pipeline."""

from __future__ import annotations

from typing import List, Sequence


class HivemindError(Exception):
    """Base class for every error raised by this package."""


class ProviderError(HivemindError):
    """A completion / knowledge provider call failed or returned garbage."""


class ProviderUnavailableError(ProviderError):
    """Every descriptor in a provider chain was skipped or failed."""

    def __init__(self, attempts: Sequence[str] = ()):
        self.attempts: List[str] = list(attempts)
        detail = "; ".join(self.attempts) if self.attempts else "no provider configured"
        super().__init__(f"no completion provider available ({detail})")


class MalformedOutputError(ProviderError):
    """The model answered but no structured payload could be parsed."""

    def __init__(self, reason: str, raw: str = ""):
        self.reason = reason
        self.raw = raw
        super().__init__(f"malformed structured output: {reason}")


class SearchProviderError(HivemindError):
    """A web search provider failed."""


class FetchError(HivemindError):
    """A readable-content fetch failed."""


class BlockedByPortalError(HivemindError):
    """The marketplace blocked the scraper. Fatal for the current item."""

    def __init__(self, message: str = "BLOCKED_BY_PORTAL"):
        super().__init__(message)


class PipelineAborted(HivemindError):
    """The surrounding job was cancelled; no further stages are issued."""
