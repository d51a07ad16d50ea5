"""Factory function for instantiating inventory clients."""

import logging

from telemetry_sync.config.environment import EnvironmentConfig
from telemetry_sync.config.models import AdvancedConfig, DeviceSyncConfig, SyncSource

from .auth import ClientCredentialsTokenProvider
from .base import BaseInventoryClient
from .defender import DefenderMachineClient
from .exceptions import InventoryConfigurationError
from .intune import IntuneManagedDeviceClient

logger = logging.getLogger(__name__)

CLIENT_CLASSES = {
    SyncSource.DEFENDER: DefenderMachineClient,
    SyncSource.INTUNE: IntuneManagedDeviceClient,
}


def get_inventory_client(
    source: SyncSource,
    sync_config: DeviceSyncConfig,
    advanced_config: AdvancedConfig,
    env_config: EnvironmentConfig,
) -> BaseInventoryClient:
    """Build the inventory client for ``source`` with its own token provider.

    Args:
        source: Which inventory to read
        sync_config: Per-source settings (page size)
        advanced_config: Timeout and user agent
        env_config: OAuth credentials

    Returns:
        Configured inventory client

    Raises:
        InventoryConfigurationError: If the source is unknown, credentials are
            missing or the settings are rejected by the client

    Example:
        >>> client = get_inventory_client(SyncSource.DEFENDER, app.defender_sync, app.advanced, env)
        >>> result = client.fetch_all()
    """
    try:
        source = SyncSource(source)
    except ValueError as e:
        supported = ", ".join(sorted(s.value for s in SyncSource))
        raise InventoryConfigurationError(
            f"Unknown inventory source: {source}. Supported sources: {supported}"
        ) from e

    credentials = (
        env_config.defender_credentials
        if source is SyncSource.DEFENDER
        else env_config.graph_credentials
    )
    if not credentials.is_complete:
        prefix = "DEFENDER_/GRAPH_" if source is SyncSource.DEFENDER else "GRAPH_"
        raise InventoryConfigurationError(
            f"Missing credentials for {source.value} sync; set {prefix}TENANT_ID, "
            "CLIENT_ID and CLIENT_SECRET"
        )

    client_class = CLIENT_CLASSES[source]
    logger.debug(
        "Creating inventory client",
        extra={"source": source.value, "client_class": client_class.__name__},
    )

    try:
        token_provider = ClientCredentialsTokenProvider(
            credentials, timeout=advanced_config.http_request_timeout
        )
        return client_class(
            token_provider,
            page_size=sync_config.page_size,
            timeout=advanced_config.http_request_timeout,
            user_agent=advanced_config.user_agent,
        )
    except InventoryConfigurationError:
        raise
    except Exception as e:
        raise InventoryConfigurationError(f"Failed to create {source.value} client: {e}") from e
