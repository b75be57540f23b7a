"""
Error taxonomy for the scanner client.
Every error carries a human-readable message suitable for display.
"""

from typing import Optional


class ScannerClientError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransientNetworkFailure(ScannerClientError):
    """A poll or price-feed request failed; the next tick retries."""


class StartupFailure(ScannerClientError):
    """Scan start or stream open failed. Surfaced once, never retried."""


class StreamError(ScannerClientError):
    """The push stream reported an error or broke before completing."""


class CacheFailure(ScannerClientError):
    """The cache store could not be read or written."""


class ServiceUnavailable(ScannerClientError):
    """The health probe failed: the scanner API is not reachable."""

    def __init__(self, base_url: str, reason: Optional[str] = None):
        message = f"Scanner API at {base_url} is not reachable. Make sure the API server is running."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.base_url = base_url


class RemoteRequestError(ScannerClientError):
    """A one-shot request returned a non-2xx status or failed in transport."""

    def __init__(self, endpoint: str, reason: str, status: Optional[int] = None):
        if status is not None:
            message = f"Request to {endpoint} failed with HTTP {status}: {reason}"
        else:
            message = f"Request to {endpoint} failed: {reason}"
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status
