from __future__ import annotations


class LeadPullError(Exception):
    """Base class for engine errors."""


class ProviderError(LeadPullError):
    """The audience-data provider failed (transport, non-2xx, malformed body)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """A provider request did not answer within the configured timeout."""


class PreviewUnavailable(ProviderError):
    """The provider does not expose the preview endpoint."""


class RecordMappingError(LeadPullError):
    """A provider record could not be mapped to ExternalRecord."""


class RunLockedError(LeadPullError):
    """Another segment pull run holds the single-flight lease."""
