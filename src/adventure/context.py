"""Per-run state for export and import.

A context lives for exactly one run and is passed explicitly through every call.
Runs are strictly sequential, so the maps below are mutated without locks.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Set

from adventure.archive import ArchiveReader, ArchiveWriter
from adventure.helpers import sanitize_adventure_name
from adventure.models import AdventureManifest
from adventure.progress import ProgressReporter, ProgressTracker


class AssetCache:
    """Export-run map from original asset reference to its archive path."""

    def __init__(self):
        self._paths: Dict[str, str] = {}
        # Archive path -> reference whose bytes it holds
        self._owners: Dict[str, str] = {}

    def __contains__(self, reference: str) -> bool:
        return reference in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def get(self, reference: str) -> Optional[str]:
        return self._paths.get(reference)

    def assign(self, reference: str, archive_path: str) -> None:
        self._paths[reference] = archive_path
        self._owners[archive_path] = reference

    def claim(self, archive_path: str, reference: str) -> None:
        """Record which reference an extra copy at ``archive_path`` came from."""
        self._owners.setdefault(archive_path, reference)

    def owner(self, archive_path: str) -> Optional[str]:
        return self._owners.get(archive_path)

    def clear(self) -> None:
        self._paths.clear()
        self._owners.clear()


class TranslationTable:
    """Import-run map from original ids to newly created ids, per kind."""

    def __init__(self):
        self._ids: Dict[str, Dict[str, str]] = defaultdict(dict)

    def record(self, kind: str, original_id: str, new_id: str) -> None:
        self._ids[kind][original_id] = new_id

    def lookup(self, kind: str, original_id: Optional[str]) -> Optional[str]:
        if original_id is None:
            return None
        return self._ids.get(kind, {}).get(original_id)

    def has(self, kind: str, original_id: Optional[str]) -> bool:
        return self.lookup(kind, original_id) is not None

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {kind: dict(ids) for kind, ids in self._ids.items()}

    def clear(self) -> None:
        self._ids.clear()


class ExportContext:
    """State of one export run."""

    def __init__(
        self,
        storage,
        reporter: Optional[ProgressReporter] = None,
        core_prefixes: Sequence[str] = ()
    ):
        self.storage = storage
        self.archive = ArchiveWriter()
        self.assets = AssetCache()
        self.progress = ProgressTracker(reporter)
        self.core_prefixes = tuple(core_prefixes)

    def close(self) -> None:
        """Discard run state; called on Done and Aborted."""
        self.assets.clear()


class ImportContext:
    """State of one import run."""

    def __init__(
        self,
        reader: ArchiveReader,
        manifest: AdventureManifest,
        storage,
        world_id: str,
        reporter: Optional[ProgressReporter] = None
    ):
        self.reader = reader
        self.manifest = manifest
        self.storage = storage
        self.world_id = world_id
        self.translations = TranslationTable()
        # Archive paths already uploaded during this run
        self.imported: Set[str] = set()
        self.uploaded = 0
        self.progress = ProgressTracker(reporter)
        # Live folder id -> parent id, for depth-limit flattening
        self.folder_tree: Dict[str, Optional[str]] = {}
        self.live_folders: List[Dict[str, Any]] = []
        # Folder type -> default root folder id when the tree is not preserved
        self.default_roots: Dict[str, str] = {}
        self.errors: List[str] = []

    @property
    def preserve_folders(self) -> bool:
        return self.manifest.options.folders

    @property
    def adventure_root(self) -> str:
        """Live storage directory that receives this adventure's binaries."""
        return f"worlds/{self.world_id}/adventures/{sanitize_adventure_name(self.manifest.name)}"

    def close(self) -> None:
        """Discard run state; called on Done and Aborted."""
        self.translations.clear()
        self.imported.clear()
        self.folder_tree.clear()
        self.live_folders.clear()
        self.default_roots.clear()
