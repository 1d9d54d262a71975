"""Custom exceptions for pubmed_gateway."""


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class UpstreamError(GatewayError):
    """Raised when the PubMed API answers with a non-success response."""

    def __init__(self, message: str, status_code: int = None, url: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ResolverError(GatewayError):
    """Raised by an open-access source when a probe cannot complete."""
    pass


class DownloadError(GatewayError):
    """Exception raised when download fails."""
    pass


class FileTooLargeError(DownloadError):
    """Raised when the advertised size exceeds the configured maximum."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"File too large: {size} bytes (limit {limit} bytes)")
        self.size = size
        self.limit = limit


class FullTextDisabledError(GatewayError):
    """Raised when a full-text operation is called while full text is disabled."""
    pass


class RequestLimitError(GatewayError):
    """Raised when a request names more identifiers than allowed."""
    pass


class CancelledError(GatewayError):
    """Raised when an operation is cancelled or its deadline expires."""
    pass
