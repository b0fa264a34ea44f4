"""Centralized exception hierarchy for the adventure archiver.

Usage:
    from exceptions import PackagingError, ManifestMissingError

    raise ManifestMissingError("Archive has no adventure.json")

Per-item failures (one asset, one document) are recorded and the run continues.
Structural failures (unreadable archive, missing manifest, packaging) abort it.
"""


class AdventureError(Exception):
    """Base exception for all adventure archiver errors."""
    pass


class ConfigurationError(AdventureError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing relay credentials
        - Unknown storage target
    """
    pass


class FoundryError(AdventureError):
    """Raised when a relay API call to FoundryVTT fails.

    Examples:
        - Document creation rejected
        - Folder listing unavailable
    """
    pass


class StorageError(AdventureError):
    """Base class for storage backend failures."""
    pass


class AssetUnavailableError(StorageError):
    """Raised when a local asset cannot be read during export.

    The exporter degrades the reference to an external marker instead of failing.
    """
    pass


class StorageUploadTooLargeError(StorageError):
    """Raised when the backend rejects an upload for exceeding its size limit."""
    pass


class StorageUploadRejectedError(StorageError):
    """Raised when the backend rejects an upload for any other reason."""
    pass


class DocumentExportError(AdventureError):
    """Raised when a single document cannot be relocated or serialized."""

    def __init__(self, kind: str, document_id: str, message: str):
        super().__init__(f"Failed to export {kind} {document_id}: {message}")
        self.kind = kind
        self.document_id = document_id


class DocumentImportError(AdventureError):
    """Raised when a single document cannot be recreated."""

    def __init__(self, kind: str, document_id: str, message: str):
        super().__init__(f"Failed to import {kind} {document_id}: {message}")
        self.kind = kind
        self.document_id = document_id


class ArchiveFormatError(AdventureError):
    """Raised when an archive cannot be read as an adventure."""
    pass


class ManifestMissingError(ArchiveFormatError):
    """Raised when an archive has no adventure.json manifest."""
    pass


class PackagingError(AdventureError):
    """Raised when the final archive container cannot be generated."""
    pass
