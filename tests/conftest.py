"""Shared pytest fixtures."""

import pytest

from telemetry_sync.logging.context import clear_log_context
from telemetry_sync.persistence.database import close_database, init_database


@pytest.fixture
def temp_database():
    """Create a temporary in-memory database for testing."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture(autouse=True)
def clean_log_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()
