"""Gateway error taxonomy."""

from typing import Optional


class ProviderError(Exception):
    """A vendor call failed.

    Attributes:
        status_code: HTTP status returned by the vendor, if any.
        body: Raw vendor error body, if any.
        provider_name: Name of the provider that failed.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        provider_name: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.provider_name = provider_name


class VendorTransportError(ProviderError):
    """Network failure or timeout talking to a vendor."""


class VendorProtocolError(ProviderError):
    """Vendor returned a non-success status or a malformed payload."""


class UnsupportedProviderError(ProviderError):
    """No adapter is registered for the provider type."""


class FailoverExhaustedError(Exception):
    """Every eligible provider failed for a chat request."""

    def __init__(
        self,
        message: str,
        failover_count: int = 0,
        provider_name: Optional[str] = None,
        provider_id: Optional[int] = None
    ):
        super().__init__(message)
        self.failover_count = failover_count
        self.provider_name = provider_name
        self.provider_id = provider_id


class KnowledgeRetrievalError(Exception):
    """Knowledge base documents could not be loaded."""


class TelemetryWriteError(Exception):
    """A usage record could not be written."""


class CatalogProviderError(Exception):
    """Fetching one provider's model listing failed during catalog sync."""
