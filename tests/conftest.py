"""
Shared pytest fixtures for adventure archive tests.

FakeWorld and FakeStorage stand in for the relay-backed WorldClient and
StorageBackend, keeping every document, folder and file in memory.
"""

import copy
import itertools
import posixpath
import pytest
from pathlib import Path
from typing import Any, Dict, List, Optional

from adventure.models import BrowseResult, DocumentKind
from adventure.progress import RecordingProgressReporter
from exceptions import AssetUnavailableError, FoundryError
from foundry.storage import StorageBackend, _filter_listing

# Project root
PROJECT_ROOT = Path(__file__).parent.parent


class FakeWorld:
    """In-memory world with the coroutine surface of WorldClient."""

    def __init__(self, world_id: str = "test-world"):
        self.info: Dict[str, Any] = {
            "id": world_id,
            "system": "dnd5e",
            "coreVersion": "11.315",
            "systemVersion": "2.4.1",
            "modules": [
                {"id": "dice-so-nice", "title": "Dice So Nice!", "active": True},
                {"id": "old-module", "title": "Old Module", "active": False},
            ],
        }
        self.documents: Dict[str, Dict[str, Dict[str, Any]]] = {kind.value: {} for kind in DocumentKind}
        self.folders: List[Dict[str, Any]] = []
        self.compendiums: Dict[str, Dict[str, Any]] = {}
        self.failing: set = set()
        self.created: List[tuple] = []
        self.updates: List[tuple] = []
        self.created_folders: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def next_id(self, prefix: str = "new") -> str:
        return f"{prefix}{next(self._ids):04d}"

    def add_document(self, kind: DocumentKind, data: Dict[str, Any]) -> Dict[str, Any]:
        self.documents[kind.value][data["_id"]] = data
        return data

    def documents_of(self, kind: DocumentKind) -> List[Dict[str, Any]]:
        return list(self.documents[kind.value].values())

    async def get_world_info(self) -> Dict[str, Any]:
        return copy.deepcopy(self.info)

    async def get_document(self, kind: DocumentKind, document_id: str) -> Optional[Dict[str, Any]]:
        if (kind.value, document_id) in self.failing:
            raise FoundryError(f"Relay request GET /get failed: 500 - {kind.value} {document_id}")
        document = self.documents[kind.value].get(document_id)
        return copy.deepcopy(document) if document else None

    async def list_documents(self, kind: DocumentKind) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.documents_of(kind))

    async def find_document_by_import_id(self, kind: DocumentKind, import_id: str) -> Optional[Dict[str, Any]]:
        for document in self.documents_of(kind):
            if (document.get("flags") or {}).get("importid") == import_id:
                return copy.deepcopy(document)
        return None

    async def create_document(self, kind: DocumentKind, data: Dict[str, Any]) -> Dict[str, Any]:
        document = {**copy.deepcopy(data), "_id": self.next_id()}
        self.add_document(kind, document)
        self.created.append((kind, document))
        return copy.deepcopy(document)

    async def update_document(self, kind: DocumentKind, document_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        document = self.documents[kind.value][document_id]
        for key, value in updates.items():
            target = document
            *parents, leaf = key.split(".")
            for parent in parents:
                target = target.setdefault(parent, {})
            target[leaf] = copy.deepcopy(value)
        self.updates.append((kind, document_id, copy.deepcopy(updates)))
        return copy.deepcopy(document)

    async def list_folders(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.folders)

    async def create_folder(self, data: Dict[str, Any]) -> Dict[str, Any]:
        folder = {**copy.deepcopy(data), "_id": self.next_id("fld")}
        self.folders.append(folder)
        self.created_folders.append(folder)
        return copy.deepcopy(folder)

    async def get_compendium(self, pack_id: str) -> Optional[Dict[str, Any]]:
        pack = self.compendiums.get(pack_id)
        return copy.deepcopy(pack) if pack else None

    async def list_compendiums(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(pack["metadata"]) for pack in self.compendiums.values()]

    async def get_or_create_compendium(self, document_type: str, label: str) -> Dict[str, Any]:
        for pack in self.compendiums.values():
            if pack["metadata"].get("label") == label:
                return copy.deepcopy(pack["metadata"])
        collection = f"world.{self.next_id('pack')}"
        metadata = {"collection": collection, "label": label, "type": document_type}
        self.compendiums[collection] = {"metadata": metadata, "entries": []}
        return copy.deepcopy(metadata)

    async def create_compendium_entry(self, pack_id: str, document_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        entry = {**copy.deepcopy(data), "_id": self.next_id("ent")}
        self.compendiums[pack_id]["entries"].append(entry)
        return copy.deepcopy(entry)

    def is_world_active(self) -> bool:
        return True


class FakeStorage(StorageBackend):
    """In-memory storage keyed by full path."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(files or {})
        self.reads: List[str] = []
        self.browsed: List[str] = []
        self.directories: List[str] = []
        self.uploads: List[tuple] = []
        self.upload_errors: Dict[str, Exception] = {}

    async def browse(self, source, target, extensions=None, wildcard=False) -> BrowseResult:
        self.browsed.append(target)
        directory = posixpath.dirname(target) if wildcard else target
        listing = [path for path in self.files if posixpath.dirname(path) == directory]
        return BrowseResult(
            target=directory,
            files=_filter_listing(sorted(listing), target if wildcard else None, extensions)
        )

    async def create_directory(self, source, path) -> None:
        self.directories.append(path)

    async def upload_file(self, source, path, filename, content) -> Optional[str]:
        if filename in self.upload_errors:
            raise self.upload_errors[filename]
        self.uploads.append((source, path, filename, content))
        self.files[f"{path}/{filename}"] = content
        return f"{path}/{filename}"

    async def read_binary(self, path) -> bytes:
        self.reads.append(path)
        if path not in self.files:
            raise AssetUnavailableError(f"Cannot read '{path}': 404")
        return self.files[path]


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fake_world():
    """Empty in-memory source world."""
    return FakeWorld()


@pytest.fixture
def target_world():
    """Empty in-memory world to import into."""
    return FakeWorld(world_id="target-world")


@pytest.fixture
def fake_storage():
    """Empty in-memory storage."""
    return FakeStorage()


@pytest.fixture
def reporter():
    """Progress reporter that records every update."""
    return RecordingProgressReporter()


@pytest.fixture
def goblin_world(fake_world):
    """
    World with one scene holding two goblin tokens that share an image,
    the goblin actor, and the image file in storage.
    """
    fake_world.add_document(DocumentKind.ACTOR, {
        "_id": "act1",
        "name": "Goblin",
        "type": "npc",
        "img": "tokens/goblin.png",
        "prototypeToken": {"texture": {"src": "tokens/goblin.png"}},
        "permission": {"default": 0},
        "flags": {},
    })
    fake_world.add_document(DocumentKind.SCENE, {
        "_id": "scn1",
        "name": "Goblin Cave",
        "img": "maps/cave.webp",
        "tokens": [
            {"_id": "tok1", "name": "Goblin", "img": "tokens/goblin.png", "actorId": "act1"},
            {"_id": "tok2", "name": "Goblin", "img": "tokens/goblin.png", "actorId": "act1"},
        ],
        "flags": {},
    })
    storage = FakeStorage({
        "tokens/goblin.png": b"goblin-bytes",
        "maps/cave.webp": b"cave-bytes",
    })
    return fake_world, storage


@pytest.fixture
def make_storage():
    """Factory for in-memory storage pre-loaded with files."""
    return FakeStorage
