"""
Bridge Errors

Error taxonomy for provider calls and webhook delivery. Public operations
catch these and report them through typed outcomes; they only propagate
between a provider adapter and the component that called it.
"""

from typing import Any


class BridgeError(Exception):
    """Base class for bridge errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class AdapterUnavailable(BridgeError):
    """Provider unreachable: network error, timeout or 5xx. Recovered by the next poll."""


class MalformedProviderResponse(AdapterUnavailable):
    """Provider answered with an unexpected shape (e.g. HTML instead of JSON)."""


class AuthRejected(BridgeError):
    """Provider rejected the credentials. Fatal until the tenant is reconfigured."""


class ProviderRejected(BridgeError):
    """Provider refused the request (4xx other than an auth failure)."""


class ConfigurationError(BridgeError):
    """Tenant backend configuration is incomplete for the provider contract."""


class WebhookUnconfigured(BridgeError):
    """Tenant has no webhook URL for the event. Dropped, never retried."""


class DeliveryFailed(BridgeError):
    """Webhook POST failed (non-2xx, network error or timeout). Logged, never retried."""


class DuplicateInboundMessage(BridgeError):
    """Provider callback already recorded. Not an error for the caller."""
