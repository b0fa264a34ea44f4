"""FoundryVTT API integration module."""

from .client import WorldClient
from .storage import ForgeStorage, RelayStorage, StorageBackend, select_storage_backend, verify_path

__all__ = [
    "WorldClient",
    "StorageBackend",
    "RelayStorage",
    "ForgeStorage",
    "select_storage_backend",
    "verify_path"
]
