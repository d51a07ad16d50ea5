"""Intune managed device inventory client (Microsoft Graph)."""

from .base import BaseInventoryClient


class IntuneManagedDeviceClient(BaseInventoryClient):
    """Reads all Intune managed devices through Microsoft Graph.

    API Details:
        Endpoint: https://graph.microsoft.com/v1.0/deviceManagement/managedDevices
        Method: GET
        Authentication: Bearer token for https://graph.microsoft.com/.default
        Response: OData page, at most 999 devices per page
    """

    SOURCE_NAME = "Intune"
    BASE_URL = "https://graph.microsoft.com/v1.0/deviceManagement/managedDevices"
    MAX_PAGE_SIZE = 999
