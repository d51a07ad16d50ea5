"""Test helper utilities for Telemetry Sync tests."""

from .fakes import (
    FakeDocumentStore,
    FakeInventoryClient,
    InMemoryMetadataStore,
    make_devices,
)

__all__ = [
    "FakeDocumentStore",
    "FakeInventoryClient",
    "InMemoryMetadataStore",
    "make_devices",
]
