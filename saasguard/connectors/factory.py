"""Build connectors from stored identity provider records."""

from typing import Any, Dict, Optional, Type

import structlog

from saasguard.connectors.azure_ad import AzureADConnector
from saasguard.connectors.base import Connector
from saasguard.connectors.google_workspace import GoogleWorkspaceConnector
from saasguard.connectors.models import ConnectorConfig
from saasguard.connectors.okta import OktaConnector
from saasguard.core.exceptions import ValidationError
from saasguard.storage import Storage

logger = structlog.get_logger(__name__)

CONNECTORS: Dict[str, Type[Connector]] = {
    "azuread": AzureADConnector,
    "google": GoogleWorkspaceConnector,
    "okta": OktaConnector,
}


def create_connector(
    provider: Dict[str, Any],
    cipher,
    storage: Optional[Storage] = None,
    **kwargs: Any,
) -> Connector:
    """Instantiate the connector for an identity provider record.

    Args:
        provider: Identity provider record with an encrypted ``client_secret``
        cipher: Cipher used to decrypt the secret
        storage: Record store passed to the connector
        **kwargs: Extra connector options (http_client, retry_config, page_delay)

    Returns:
        Connector ready for discovery

    Raises:
        ValidationError: Unknown provider type
        AuthenticationError: Secret could not be decrypted
    """
    provider_type = provider.get("type")
    connector_class = CONNECTORS.get(provider_type)
    if connector_class is None:
        raise ValidationError(f"Unsupported identity provider type: {provider_type}")

    config = ConnectorConfig(
        client_id=provider.get("client_id") or "",
        client_secret=cipher.decrypt(provider.get("client_secret") or ""),
        tenant_domain=provider.get("tenant_domain"),
        scopes=list(provider.get("scopes") or []),
        custom_config=dict(provider.get("config") or {}),
    )

    logger.debug("connector_created", provider=provider_type, idp_id=provider.get("id"))
    return connector_class(
        config,
        tenant_id=provider["tenant_id"],
        idp_id=provider["id"],
        storage=storage,
        **kwargs,
    )
