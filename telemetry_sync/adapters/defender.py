"""Microsoft Defender for Endpoint machine inventory client."""

from .base import BaseInventoryClient


class DefenderMachineClient(BaseInventoryClient):
    """Reads all machines onboarded to Defender for Endpoint.

    API Details:
        Endpoint: https://api.security.microsoft.com/api/machines
        Method: GET
        Authentication: Bearer token for https://api.securitycenter.microsoft.com/.default
        Response: OData page, up to 10 000 machines per page
    """

    SOURCE_NAME = "Defender"
    BASE_URL = "https://api.security.microsoft.com/api/machines"
    MAX_PAGE_SIZE = 10000
