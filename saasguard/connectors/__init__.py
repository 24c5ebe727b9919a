"""Identity provider connectors."""

from saasguard.connectors.azure_ad import AzureADConnector
from saasguard.connectors.base import Connector, perform_full_sync
from saasguard.connectors.factory import CONNECTORS, create_connector
from saasguard.connectors.google_workspace import GoogleWorkspaceConnector
from saasguard.connectors.models import (
    ConnectionTestResult,
    ConnectorConfig,
    DiscoveredApp,
    DiscoveredOAuthToken,
    DiscoveredUserAccess,
    SyncResult,
    UserSyncResult,
)
from saasguard.connectors.okta import OktaConnector

__all__ = [
    "AzureADConnector",
    "CONNECTORS",
    "ConnectionTestResult",
    "Connector",
    "ConnectorConfig",
    "DiscoveredApp",
    "DiscoveredOAuthToken",
    "DiscoveredUserAccess",
    "GoogleWorkspaceConnector",
    "OktaConnector",
    "SyncResult",
    "UserSyncResult",
    "create_connector",
    "perform_full_sync",
]
