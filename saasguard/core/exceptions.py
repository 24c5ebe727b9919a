"""Custom exceptions for saasguard.

Errors are grouped by how callers should react to them: retry, surface
immediately, or record and continue.
"""


class SaasGuardError(Exception):
    """Base exception for all saasguard errors."""

    pass


class ConnectionError(SaasGuardError):
    """Raised when a remote call fails in a way that may succeed on retry.

    This includes:
    - Connection timeouts
    - DNS resolution and TLS failures
    - HTTP 5xx errors
    - HTTP 429 rate limiting
    """

    pass


class AuthenticationError(SaasGuardError):
    """Raised when credentials are rejected.

    This includes:
    - Invalid client id or secret
    - Expired or malformed service account keys
    - HTTP 401 and 403 errors
    """

    pass


class ValidationError(SaasGuardError):
    """Raised when input is rejected before any remote call is made.

    This includes:
    - URLs outside a provider allow-list
    - Invalid tenant domains
    - Malformed playbook definitions
    """

    pass


class PartialFailure(SaasGuardError):
    """Raised when one unit of work fails without aborting the larger run."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(SaasGuardError):
    """Raised when a required record does not exist in storage."""

    pass


class APIError(SaasGuardError):
    """Raised when a provider API returns an unexpected, non-retryable error."""

    def __init__(self, message: str, status_code: int = None, response: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response
