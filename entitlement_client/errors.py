"""Exceptions raised by the entitlement client."""


class EntitlementError(Exception):
    """Base class for entitlement client errors."""


class InvalidConfiguration(EntitlementError, ValueError):
    """The provider catalog or allow-list is misconfigured."""


class InvalidProvider(EntitlementError, ValueError):
    """A provider switch named a provider that is not allow-listed."""

    def __init__(self, provider: str):
        super().__init__(f"provider '{provider}' is not in the allowed sellers")
        self.provider = provider


class TransportFailure(EntitlementError):
    """The remote authority could not be reached."""
