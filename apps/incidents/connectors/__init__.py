"""
Status-page connectors for ingesting incidents from vendor APIs.
"""

from urllib.parse import urlparse

from apps.incidents.connectors.base import (
    BaseConnector,
    ConnectorConfigurationError,
    ConnectorError,
    ConnectorHTTPError,
    ConnectorNetworkError,
    ConnectorTimeoutError,
    ParsedComponent,
    ParsedIncident,
    ParsedIncidentUpdate,
    PayloadError,
    UnsupportedConnectorError,
)
from apps.incidents.connectors.statuspage import StatusPageConnector
from apps.incidents.connectors.github import GitHubStatusConnector
from apps.incidents.connectors.azure import AzureStatusConnector

__all__ = [
    "BaseConnector",
    "ParsedComponent",
    "ParsedIncident",
    "ParsedIncidentUpdate",
    "ConnectorError",
    "ConnectorConfigurationError",
    "ConnectorHTTPError",
    "ConnectorNetworkError",
    "ConnectorTimeoutError",
    "PayloadError",
    "UnsupportedConnectorError",
    "StatusPageConnector",
    "GitHubStatusConnector",
    "AzureStatusConnector",
    "CONNECTOR_REGISTRY",
    "get_connector_class",
    "create_connector",
]

# Keyed by DataSource.connector_type
CONNECTOR_REGISTRY: dict[str, type[BaseConnector]] = {
    "statuspage": StatusPageConnector,
    "github-status": GitHubStatusConnector,
    "azure-status": AzureStatusConnector,
}


def get_connector_class(connector_type: str) -> type[BaseConnector]:
    """
    Look up the connector class for a connector type.

    Raises:
        UnsupportedConnectorError: If no connector is registered for the type.
    """
    if connector_type not in CONNECTOR_REGISTRY:
        raise UnsupportedConnectorError(connector_type, list(CONNECTOR_REGISTRY.keys()))
    return CONNECTOR_REGISTRY[connector_type]


def create_connector(data_source) -> BaseConnector:
    """
    Build the connector for a data source.

    No network traffic happens here; configuration problems surface before any
    request is made.

    Args:
        data_source: DataSource (or any object with connector_type, base_url,
            api_key and config attributes).

    Returns:
        Connector instance bound to the data source.

    Raises:
        UnsupportedConnectorError: Unknown connector type.
        ConnectorConfigurationError: No usable base URL.
    """
    connector = get_connector_class(data_source.connector_type)(data_source)

    parsed = urlparse(connector.base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConnectorConfigurationError(
            f"Data source {data_source.name!r} has no usable base URL: {connector.base_url!r}"
        )
    return connector
