"""Hostname allow-lists for outbound provider calls.

Any URL built from provider data (pagination links, tenant domains) is
checked here before a request is issued.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlparse

import structlog

from saasguard.core.exceptions import ValidationError

logger = structlog.get_logger(__name__)

GRAPH_HOSTS = frozenset({"graph.microsoft.com", "graph.microsoft-ppe.com"})
AZURE_LOGIN_HOSTS = frozenset({"login.microsoftonline.com"})
GOOGLE_API_HOSTS = frozenset(
    {"admin.googleapis.com", "www.googleapis.com", "oauth2.googleapis.com"}
)
OKTA_DOMAIN_SUFFIXES = (".okta.com", ".okta-emea.com", ".oktapreview.com", ".okta.eu")

REVOCATION_HOSTS = {
    "azuread": frozenset({"login.microsoftonline.com", "login.microsoft.com"}),
    "google": frozenset({"admin.googleapis.com"}),
    # Okta revocation must target the configured org host
    "okta": frozenset(),
}

_UNSAFE_DOMAIN_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_domain(domain: str) -> str:
    """Strip every character that cannot appear in a hostname or tenant id."""
    sanitized = _UNSAFE_DOMAIN_CHARS.sub("", domain or "")
    if sanitized != domain:
        logger.warning("domain_sanitized", original_length=len(domain or ""), domain=sanitized)
    return sanitized


def is_valid_okta_domain(domain: str) -> bool:
    """Check that a hostname belongs to an Okta tenant."""
    return bool(domain) and domain.lower().endswith(OKTA_DOMAIN_SUFFIXES)


def validate_url(
    url: str,
    allowed_hosts: Iterable[str] = (),
    allowed_suffixes: Iterable[str] = (),
) -> str:
    """Validate that a URL is HTTPS and targets an allowed host.

    A host passes if it is in ``allowed_hosts`` exactly, or ends with one of
    ``allowed_suffixes``.

    Args:
        url: Absolute URL to validate
        allowed_hosts: Exact hostnames accepted
        allowed_suffixes: Domain suffixes accepted (e.g. ".okta.com")

    Returns:
        The URL, unchanged

    Raises:
        ValidationError: If the URL is malformed, not HTTPS, or off the list
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ValidationError(f"Invalid URL: {e}")

    if parsed.scheme != "https":
        raise ValidationError(f"Invalid protocol: {parsed.scheme or 'none'} (HTTPS required)")

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        raise ValidationError("URL has no hostname")

    hosts = {h.lower() for h in allowed_hosts}
    suffixes = tuple(s.lower() for s in allowed_suffixes)

    if hostname in hosts:
        return url
    if suffixes and hostname.endswith(suffixes):
        return url

    logger.error("url_host_not_allowed", hostname=hostname)
    raise ValidationError(f"Host {hostname} is not in the allowed list")


def validate_revocation_url(url: str, provider: str, okta_domain: Optional[str] = None) -> str:
    """Validate a token revocation endpoint for a provider.

    Args:
        url: Revocation endpoint
        provider: Provider type (azuread, google, okta)
        okta_domain: Okta tenant domain, required for okta

    Returns:
        The URL, unchanged

    Raises:
        ValidationError: If the endpoint is not allowed for the provider
    """
    if provider == "okta":
        if not okta_domain or not is_valid_okta_domain(okta_domain):
            raise ValidationError(f"Invalid Okta domain: {okta_domain}")
        return validate_url(url, allowed_hosts={okta_domain.lower()})

    if provider not in REVOCATION_HOSTS:
        raise ValidationError(f"Revocation not supported for provider: {provider}")

    return validate_url(url, allowed_hosts=REVOCATION_HOSTS[provider])
