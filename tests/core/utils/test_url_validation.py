"""Tests for outbound URL allow-lists."""

import pytest

from saasguard.core.exceptions import ValidationError
from saasguard.core.utils.url_validation import (
    GRAPH_HOSTS,
    OKTA_DOMAIN_SUFFIXES,
    is_valid_okta_domain,
    sanitize_domain,
    validate_revocation_url,
    validate_url,
)


class TestValidateUrl:
    """Tests for validate_url."""

    def test_allowed_host_passes(self):
        url = "https://graph.microsoft.com/v1.0/users"
        assert validate_url(url, allowed_hosts=GRAPH_HOSTS) == url

    def test_host_matching_is_case_insensitive(self):
        url = "https://GRAPH.microsoft.com/v1.0/users"
        assert validate_url(url, allowed_hosts=GRAPH_HOSTS) == url

    def test_suffix_match_passes(self):
        url = "https://acme.okta.com/api/v1/apps?after=abc"
        assert validate_url(url, allowed_suffixes=OKTA_DOMAIN_SUFFIXES) == url

    def test_http_rejected(self):
        with pytest.raises(ValidationError, match="HTTPS required"):
            validate_url("http://graph.microsoft.com/v1.0/users", allowed_hosts=GRAPH_HOSTS)

    def test_foreign_host_rejected(self):
        with pytest.raises(ValidationError, match="not in the allowed list"):
            validate_url("https://evil.example.com/steal", allowed_hosts=GRAPH_HOSTS)

    def test_lookalike_suffix_rejected(self):
        with pytest.raises(ValidationError):
            validate_url("https://acme.okta.com.evil.io/api", allowed_suffixes=OKTA_DOMAIN_SUFFIXES)

    def test_missing_hostname_rejected(self):
        with pytest.raises(ValidationError):
            validate_url("https:///path", allowed_hosts=GRAPH_HOSTS)


class TestRevocationUrls:
    def test_google_endpoint(self):
        url = "https://admin.googleapis.com/admin/directory/v1/users/jane@acme.com/tokens/client"
        assert validate_revocation_url(url, "google") == url

        with pytest.raises(ValidationError):
            validate_revocation_url("https://oauth2.googleapis.com/revoke", "google")

    def test_azure_endpoint(self):
        url = "https://login.microsoftonline.com/acme/oauth2/v2.0/revoke"
        assert validate_revocation_url(url, "azuread") == url

    def test_okta_endpoint_requires_valid_domain(self):
        url = "https://acme.okta.com/oauth2/v1/revoke"
        assert validate_revocation_url(url, "okta", okta_domain="acme.okta.com") == url

        with pytest.raises(ValidationError, match="Invalid Okta domain"):
            validate_revocation_url(url, "okta", okta_domain="acme.example.com")

    def test_okta_endpoint_must_match_org_host(self):
        with pytest.raises(ValidationError, match="evil.okta.com"):
            validate_revocation_url(
                "https://evil.okta.com/oauth2/v1/revoke", "okta", okta_domain="acme.okta.com"
            )

    def test_cross_provider_host_rejected(self):
        with pytest.raises(ValidationError):
            validate_revocation_url("https://oauth2.googleapis.com/revoke", "azuread")

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError, match="not supported"):
            validate_revocation_url("https://example.com/revoke", "github")


class TestDomains:
    def test_sanitize_strips_path_and_scheme_characters(self):
        assert sanitize_domain("acme.okta.com/../admin") == "acme.okta.com..admin"
        assert sanitize_domain("tenant id?x=1") == "tenantidx1"

    def test_sanitize_keeps_clean_domain(self):
        assert sanitize_domain("acme.onmicrosoft.com") == "acme.onmicrosoft.com"

    def test_sanitize_none(self):
        assert sanitize_domain(None) == ""

    @pytest.mark.parametrize(
        "domain",
        ["acme.okta.com", "acme.okta-emea.com", "acme.oktapreview.com", "ACME.OKTA.COM"],
    )
    def test_valid_okta_domains(self, domain):
        assert is_valid_okta_domain(domain)

    @pytest.mark.parametrize("domain", ["", "okta.com.evil.io", "acme.example.com"])
    def test_invalid_okta_domains(self, domain):
        assert not is_valid_okta_domain(domain)
