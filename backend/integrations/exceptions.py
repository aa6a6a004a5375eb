"""Typed exception hierarchy for provider errors.

Raised by the sync orchestration layer when the normalized records handed
over by a provider adapter cannot be processed.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class ProviderDataError(ProviderError):
    """Malformed or incomplete normalized record from a provider."""

    def __init__(self, message: str, provider_name: str = "", record_id: str | None = None):
        self.record_id = record_id
        super().__init__(message, provider_name)
