"""Environment variable loading and validation."""

import os
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import ConfigurationError

GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
DEFENDER_DEFAULT_SCOPE = "https://api.securitycenter.microsoft.com/.default"
DEFAULT_DATABASE_URL = "sqlite:///./data/telemetry_sync.db"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OAuthCredentials:
    """Client-credentials grant settings for one API audience."""

    tenant_id: str
    client_id: str
    client_secret: str
    scope: str

    @property
    def is_complete(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return (
            f"OAuthCredentials(tenant_id={self.tenant_id!r}, "
            f"client_id={self.client_id!r}, scope={self.scope!r})"
        )


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        graph_credentials: OAuthCredentials,
        defender_credentials: OAuthCredentials,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.graph_credentials = graph_credentials
        self.defender_credentials = defender_credentials
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.environment = environment or "local"


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Graph credentials:
    - GRAPH_TENANT_ID, GRAPH_CLIENT_ID, GRAPH_CLIENT_SECRET
    - GRAPH_SCOPE (default: https://graph.microsoft.com/.default)

    Defender credentials (each falls back to its GRAPH_* counterpart):
    - DEFENDER_TENANT_ID, DEFENDER_CLIENT_ID, DEFENDER_CLIENT_SECRET
    - DEFENDER_SCOPE (default: https://api.securitycenter.microsoft.com/.default)

    Optional:
    - DATABASE_URL: SQLAlchemy URL of the document store
    - LOG_LEVEL: Override log level
    - ENVIRONMENT: Label stamped onto log records (default: local)

    Credentials are only required by the sync jobs that use them, so missing
    values are not an error here; a partially filled set is.

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If a credential set is incomplete or LOG_LEVEL is invalid
    """
    errors: List[str] = []

    graph = OAuthCredentials(
        tenant_id=os.getenv("GRAPH_TENANT_ID", ""),
        client_id=os.getenv("GRAPH_CLIENT_ID", ""),
        client_secret=os.getenv("GRAPH_CLIENT_SECRET", ""),
        scope=os.getenv("GRAPH_SCOPE") or GRAPH_DEFAULT_SCOPE,
    )
    defender = OAuthCredentials(
        tenant_id=os.getenv("DEFENDER_TENANT_ID") or graph.tenant_id,
        client_id=os.getenv("DEFENDER_CLIENT_ID") or graph.client_id,
        client_secret=os.getenv("DEFENDER_CLIENT_SECRET") or graph.client_secret,
        scope=os.getenv("DEFENDER_SCOPE") or DEFENDER_DEFAULT_SCOPE,
    )

    for prefix, credentials in (("GRAPH", graph), ("DEFENDER", defender)):
        values = {
            f"{prefix}_TENANT_ID": credentials.tenant_id,
            f"{prefix}_CLIENT_ID": credentials.client_id,
            f"{prefix}_CLIENT_SECRET": credentials.client_secret,
        }
        missing = [name for name, value in values.items() if not value]
        if missing and len(missing) < len(values):
            errors.append(f"Incomplete {prefix} credentials, missing: {', '.join(missing)}")

    log_level = os.getenv("LOG_LEVEL")
    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in the app registration values",
                "Set tenant id, client id and client secret together",
            ],
        )

    return EnvironmentConfig(
        graph_credentials=graph,
        defender_credentials=defender,
        database_url=os.getenv("DATABASE_URL"),
        log_level=log_level.upper() if log_level else None,
        environment=os.getenv("ENVIRONMENT"),
    )
