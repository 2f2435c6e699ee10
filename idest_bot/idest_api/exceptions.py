"""Custom exceptions for Idest API errors."""


class IdestAPIError(Exception):
    """Base exception for Idest API errors."""
    pass


class AuthenticationError(IdestAPIError):
    """Missing, invalid or expired access token."""
    pass


class RateLimitError(IdestAPIError):
    """API rate limit exceeded."""
    pass


class NetworkError(IdestAPIError):
    """Network connectivity issues or server-side failures."""
    pass


class DataNotFoundError(IdestAPIError):
    """Requested assignment or submission does not exist."""
    pass


class InvalidResponseError(IdestAPIError):
    """API returned unexpected response format."""
    pass
