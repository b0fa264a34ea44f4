"""Data models for the adventure export/import pipelines."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class DocumentKind(str, Enum):
    """Closed set of document kinds that can be packed into an adventure."""

    SCENE = "scene"
    ACTOR = "actor"
    ITEM = "item"
    JOURNAL = "journal"
    TABLE = "table"
    PLAYLIST = "playlist"
    COMPENDIUM = "compendium"
    MACRO = "macro"


class ExportState(str, Enum):
    """States of one export run."""

    IDLE = "idle"
    COLLECTING_SELECTION = "collecting_selection"
    PER_DOCUMENT = "per_document"
    FOLDER_PASS = "folder_pass"
    MANIFEST_PASS = "manifest_pass"
    PACKAGING = "packaging"
    DONE = "done"
    ABORTED = "aborted"


class ImportState(str, Enum):
    """States of one import run."""

    IDLE = "idle"
    READ_MANIFEST = "read_manifest"
    BUILD_FOLDER_TREE = "build_folder_tree"
    PER_DOCUMENT = "per_document"
    DONE = "done"
    ABORTED = "aborted"


class Selection(BaseModel):
    """One (kind, id) pair chosen for export."""

    model_config = ConfigDict(frozen=True)

    kind: DocumentKind
    id: str

    @classmethod
    def parse(cls, value: str) -> "Selection":
        """
        Parse a "kind:id" string.

        Example:
            >>> Selection.parse("scene:abc123")
            Selection(kind=<DocumentKind.SCENE: 'scene'>, id='abc123')
        """
        kind, sep, doc_id = value.partition(":")
        if not sep or not doc_id:
            raise ValueError(f"Selection must look like 'kind:id', got '{value}'")
        return cls(kind=DocumentKind(kind.strip().lower()), id=doc_id.strip())


class ManifestOptions(BaseModel):
    """Options recorded at export time."""

    folders: bool = False


class AdventureManifest(BaseModel):
    """Contents of adventure.json."""

    id: str
    name: str
    description: str = ""
    system: Optional[str] = None
    modules: List[str] = Field(default_factory=list)
    version: Any = None
    options: ManifestOptions = Field(default_factory=ManifestOptions)


class FolderRecord(BaseModel):
    """A folder entry from folders.json.

    Unknown host fields are kept so the folder can be recreated as exported.
    Older hosts store the parent under "parent", newer ones under "folder".
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    name: str = ""
    type: str
    parent: Optional[str] = None
    depth: Optional[int] = None
    flags: Dict[str, Any] = Field(default_factory=dict)
    parent_key: str = Field(default="folder", exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _normalise_parent(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "parent" in data:
            data["parent_key"] = "parent"
        else:
            data["parent"] = data.pop("folder", None)
            data["parent_key"] = "folder"
        return data

    @property
    def import_id(self) -> str:
        """Id stamped on export; falls back to the record id."""
        return self.flags.get("importid") or self.id

    def to_create_payload(self, parent_id: Optional[str]) -> Dict[str, Any]:
        """Build folder creation data pointing at a live parent."""
        payload = self.model_dump(by_alias=True, exclude={"id", "parent", "depth"})
        payload.pop("_id", None)
        payload[self.parent_key] = parent_id
        payload["flags"] = {**self.flags, "importid": self.import_id}
        return payload


class AssetKind(str, Enum):
    """Classification of an asset reference."""

    EMPTY = "empty"
    EXTERNAL = "external"
    WILDCARD = "wildcard"
    LOCAL = "local"


class ResolvedAsset(BaseModel):
    """Result of resolving one asset reference."""

    model_config = ConfigDict(frozen=True)

    kind: AssetKind
    path: Optional[str] = None
    remote: bool = False


class DocumentFailure(BaseModel):
    """A document skipped during a run."""

    kind: str
    id: str
    error: str


class ExportResult(BaseModel):
    """Outcome of an export run."""

    state: ExportState
    manifest: Optional[AdventureManifest] = None
    filename: Optional[str] = None
    archive: Optional[bytes] = Field(default=None, repr=False)
    output_path: Optional[Path] = None
    exported: List[Selection] = Field(default_factory=list)
    failures: List[DocumentFailure] = Field(default_factory=list)
    assets_packed: int = 0
    folders_exported: int = 0
    warnings: List[str] = Field(default_factory=list)


class ImportResult(BaseModel):
    """Outcome of an import run."""

    state: ImportState
    manifest: Optional[AdventureManifest] = None
    folders_created: int = 0
    folders_reused: int = 0
    documents_created: int = 0
    documents_updated: int = 0
    links_updated: int = 0
    assets_uploaded: int = 0
    failures: List[DocumentFailure] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    translations: Dict[str, Dict[str, str]] = Field(default_factory=dict)


class BrowseResult(BaseModel):
    """Directory listing returned by a storage backend."""

    target: str = ""
    files: List[str] = Field(default_factory=list)
    dirs: List[str] = Field(default_factory=list)
