"""Device inventory clients for the supported sources.

- Defender for Endpoint machines: defender.DefenderMachineClient
- Intune managed devices: intune.IntuneManagedDeviceClient

Use the factory to build a client with its token provider:
    from telemetry_sync.adapters import get_inventory_client
    client = get_inventory_client(SyncSource.DEFENDER, app.defender_sync, app.advanced, env)
    result = client.fetch_all()
"""

from .auth import ClientCredentialsTokenProvider
from .base import BaseInventoryClient, FetchResult
from .defender import DefenderMachineClient
from .exceptions import (
    InventoryAuthError,
    InventoryConfigurationError,
    InventoryError,
    InventoryHTTPError,
    InventoryResponseError,
    InventoryThrottledError,
    InventoryTimeoutError,
)
from .factory import get_inventory_client
from .intune import IntuneManagedDeviceClient

__all__ = [
    # Base and factory
    "BaseInventoryClient",
    "FetchResult",
    "get_inventory_client",
    "ClientCredentialsTokenProvider",
    # Clients
    "DefenderMachineClient",
    "IntuneManagedDeviceClient",
    # Exceptions
    "InventoryError",
    "InventoryHTTPError",
    "InventoryAuthError",
    "InventoryThrottledError",
    "InventoryTimeoutError",
    "InventoryResponseError",
    "InventoryConfigurationError",
]
