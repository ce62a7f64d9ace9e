"""
Provider-level errors.

Adapters raise only these. The orchestrator maps them onto the gateway error
taxonomy, keeping the message and provider name.
"""

from typing import Any, Optional


class ProviderError(Exception):
    """Base class for failures inside a provider adapter."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.payload = payload


class RateLimited(ProviderError):
    """Upstream answered 429 and retries were exhausted."""


class ProviderTimeout(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    """Transport failure or upstream 5xx."""


class ProviderNotConfigured(ProviderError):
    """Adapter needs a credential (API key) that is not set, or is disabled."""


class ProviderAuthError(ProviderError):
    """Upstream rejected the configured credential."""


class ProviderNotFound(ProviderError):
    """Upstream has no record of the requested asset, address or token."""


class ProviderResponseError(ProviderError):
    """Upstream answered with an error payload or a shape we cannot read."""


class ProviderUnsupported(ProviderError):
    """Adapter does not offer the requested capability for this input."""
