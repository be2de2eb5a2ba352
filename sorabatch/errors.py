"""Error taxonomy for download attempts."""
from typing import Optional


class DownloadError(Exception):
    """Base class for classified per-item failures."""

    kind = "download_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExtractionFailure(DownloadError):
    """No ID grammar matched the candidate; it never enters the queue."""

    kind = "extraction_failure"

    def __init__(self, candidate: str):
        super().__init__(f"Could not extract ID from URL: {candidate}")
        self.candidate = candidate


class NotFound(DownloadError):
    kind = "not_found"

    def __init__(self, message: str = "File not found on CDN (404)"):
        super().__init__(message)


class NetworkError(DownloadError):
    """Remote answered with a non-success status other than 404."""

    kind = "network_error"

    def __init__(self, status: int, message: Optional[str] = None):
        super().__init__(message or f"Network error ({status})")
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class EmptyBody(DownloadError):
    kind = "empty_body"

    def __init__(self, message: str = "Downloaded file is empty (0 bytes)"):
        super().__init__(message)


class TransportError(DownloadError):
    """Connection failure, timeout or broken transfer."""

    kind = "transport_error"
    retryable = True


class WriteFailure(DownloadError):
    kind = "write_failure"


class DownloadCancelled(DownloadError):
    kind = "cancelled"

    def __init__(self, message: str = "Download cancelled"):
        super().__init__(message)
