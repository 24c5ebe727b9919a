"""Utility modules for saasguard."""

from saasguard.core.utils.retry import (
    RetryConfig,
    calculate_backoff_delay,
    is_retryable_error,
    retry_async,
)
from saasguard.core.utils.url_validation import (
    GRAPH_HOSTS,
    GOOGLE_API_HOSTS,
    OKTA_DOMAIN_SUFFIXES,
    REVOCATION_HOSTS,
    is_valid_okta_domain,
    sanitize_domain,
    validate_url,
    validate_revocation_url,
)

__all__ = [
    # Retry utilities
    "RetryConfig",
    "calculate_backoff_delay",
    "is_retryable_error",
    "retry_async",
    # URL validation
    "GRAPH_HOSTS",
    "GOOGLE_API_HOSTS",
    "OKTA_DOMAIN_SUFFIXES",
    "REVOCATION_HOSTS",
    "is_valid_okta_domain",
    "sanitize_domain",
    "validate_url",
    "validate_revocation_url",
]
