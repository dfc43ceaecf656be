"""Error taxonomy for outbound calls made by the licensed search pipeline."""

from typing import Optional


class LicensedSearchError(Exception):
    """Base class for every error raised by this package"""


class TransportError(LicensedSearchError):
    """Network failure or timeout on an outbound call"""

    def __init__(self, url: str, detail: str):
        self.url = url
        self.detail = detail
        super().__init__(f"{detail} ({url})")


class ConfigurationError(LicensedSearchError):
    """A credential required by an authenticated operation is missing"""


class UpstreamError(LicensedSearchError):
    """An upstream service answered with a non-2xx status"""

    def __init__(self, service: str, detail: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        if status_code is not None:
            message = f"{service} returned HTTP {status_code}: {detail}"
        else:
            message = f"{service}: {detail}"
        super().__init__(message)


class ProtocolMismatch(LicensedSearchError):
    """A 402 response that does not carry x402 payment signaling"""


def describe_error(error: BaseException) -> str:
    """Render an error as 'Type: message' for result records."""
    message = str(error) or error.__class__.__name__
    return f"{error.__class__.__name__}: {message}"
