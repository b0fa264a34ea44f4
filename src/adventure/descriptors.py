"""Per-kind descriptor table of the fields that may hold asset references.

Each document kind lists the dotted field paths that carry binary references,
rich text, or ids of other documents. A path segment ending in ``[]`` walks every
element of a list, so ``tokens[].img`` visits the ``img`` of each token.

The exporter and importer interpret this table through :func:`iter_slots`
instead of inspecting document shapes at runtime.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict

from adventure.models import DocumentKind


class AssetField(BaseModel):
    """A field path holding a binary asset reference."""

    model_config = ConfigDict(frozen=True)

    path: str
    image_kind: str = "images"
    # Whose id names the archive directory: the document or the list element
    key_by: Literal["document", "element"] = "document"
    # Field substituted when a wildcard cannot be enumerated
    fallback: Optional[str] = None

    @property
    def is_list(self) -> bool:
        return "[]" in self.path


class ReferenceField(BaseModel):
    """A field path holding the id of another document."""

    model_config = ConfigDict(frozen=True)

    path: str
    target: DocumentKind


class DocumentDescriptor(BaseModel):
    """Everything the pipelines need to know about one document kind."""

    model_config = ConfigDict(frozen=True)

    kind: DocumentKind
    document_name: str
    asset_fields: Tuple[AssetField, ...] = ()
    rich_text_fields: Tuple[str, ...] = ()
    reference_fields: Tuple[ReferenceField, ...] = ()
    # Compendiums wrap their entries; each entry is relocated with entry_fields
    entries_path: Optional[str] = None
    entry_fields: Tuple[AssetField, ...] = ()


_PRIMARY_IMAGE = AssetField(path="img")
_THUMBNAIL = AssetField(path="thumb", image_kind="thumb")

DESCRIPTORS: Dict[DocumentKind, DocumentDescriptor] = {
    DocumentKind.SCENE: DocumentDescriptor(
        kind=DocumentKind.SCENE,
        document_name="Scene",
        asset_fields=(
            AssetField(path="tokens[].img", image_kind="tokenimage", key_by="element"),
            AssetField(path="tokens[].texture.src", image_kind="tokenimage", key_by="element"),
            AssetField(path="sounds[].path", image_kind="scenesound", key_by="element"),
            AssetField(path="notes[].icon", image_kind="scenenote", key_by="element"),
            AssetField(path="notes[].texture.src", image_kind="scenenote", key_by="element"),
            AssetField(path="tiles[].img", image_kind="tileimage", key_by="element"),
            AssetField(path="tiles[].texture.src", image_kind="tileimage", key_by="element"),
            _PRIMARY_IMAGE,
            AssetField(path="background.src"),
            _THUMBNAIL,
            AssetField(path="token.img", image_kind="token"),
        ),
        reference_fields=(
            ReferenceField(path="tokens[].actorId", target=DocumentKind.ACTOR),
            ReferenceField(path="notes[].entryId", target=DocumentKind.JOURNAL),
            ReferenceField(path="journal", target=DocumentKind.JOURNAL),
            ReferenceField(path="playlist", target=DocumentKind.PLAYLIST),
        ),
    ),
    DocumentKind.TABLE: DocumentDescriptor(
        kind=DocumentKind.TABLE,
        document_name="RollTable",
        asset_fields=(
            AssetField(path="results[].img", image_kind="table", key_by="element"),
        ),
    ),
    DocumentKind.PLAYLIST: DocumentDescriptor(
        kind=DocumentKind.PLAYLIST,
        document_name="Playlist",
        asset_fields=(
            AssetField(path="sounds[].path", image_kind="sounds", key_by="element"),
        ),
    ),
    DocumentKind.COMPENDIUM: DocumentDescriptor(
        kind=DocumentKind.COMPENDIUM,
        document_name="Compendium",
        entries_path="items",
        entry_fields=(
            _PRIMARY_IMAGE,
            AssetField(path="thumb"),
            AssetField(path="token.img"),
            AssetField(path="prototypeToken.texture.src"),
            AssetField(path="items[].img"),
        ),
    ),
    DocumentKind.ACTOR: DocumentDescriptor(
        kind=DocumentKind.ACTOR,
        document_name="Actor",
        asset_fields=(
            _PRIMARY_IMAGE,
            _THUMBNAIL,
            AssetField(path="token.img", image_kind="token", fallback="img"),
            AssetField(path="prototypeToken.texture.src", image_kind="token", fallback="img"),
            AssetField(path="items[].img"),
        ),
    ),
    DocumentKind.JOURNAL: DocumentDescriptor(
        kind=DocumentKind.JOURNAL,
        document_name="JournalEntry",
        asset_fields=(
            _PRIMARY_IMAGE,
            _THUMBNAIL,
            AssetField(path="pages[].src", image_kind="pages", key_by="element"),
        ),
        rich_text_fields=("content", "pages[].text.content"),
    ),
    DocumentKind.ITEM: DocumentDescriptor(
        kind=DocumentKind.ITEM,
        document_name="Item",
        asset_fields=(_PRIMARY_IMAGE,),
    ),
    DocumentKind.MACRO: DocumentDescriptor(
        kind=DocumentKind.MACRO,
        document_name="Macro",
        asset_fields=(_PRIMARY_IMAGE,),
    ),
}

# Kinds recreated in this order so later documents can reference earlier ones
IMPORT_ORDER: List[DocumentKind] = [
    DocumentKind.COMPENDIUM,
    DocumentKind.ITEM,
    DocumentKind.ACTOR,
    DocumentKind.JOURNAL,
    DocumentKind.PLAYLIST,
    DocumentKind.TABLE,
    DocumentKind.MACRO,
    DocumentKind.SCENE,
]

DOCUMENT_NAMES: Dict[str, DocumentKind] = {
    descriptor.document_name: kind for kind, descriptor in DESCRIPTORS.items()
}


def get_descriptor(kind: DocumentKind) -> DocumentDescriptor:
    """Look up the descriptor for a document kind."""
    return DESCRIPTORS[DocumentKind(kind)]


@dataclass
class Slot:
    """One concrete location of a field inside a document."""

    container: Dict[str, Any]
    key: str
    owner: Optional[Dict[str, Any]] = None

    @property
    def value(self) -> Any:
        return self.container.get(self.key)

    @value.setter
    def value(self, new_value: Any) -> None:
        self.container[self.key] = new_value

    def owner_id(self, default: str) -> str:
        """Id of the list element that owns this slot, or ``default``."""
        if self.owner:
            return str(self.owner.get("_id") or self.owner.get("id") or default)
        return default


def iter_slots(data: Dict[str, Any], path: str) -> Iterator[Slot]:
    """
    Yield every populated location of ``path`` inside ``data``.

    Missing intermediate keys, non-dict nodes and empty values are skipped.

    Example:
        >>> scene = {"tokens": [{"_id": "t1", "img": "a.png"}, {"_id": "t2"}]}
        >>> [slot.value for slot in iter_slots(scene, "tokens[].img")]
        ['a.png']
    """
    yield from _walk(data, path.split("."), None)


def _walk(node: Any, segments: List[str], owner: Optional[Dict[str, Any]]) -> Iterator[Slot]:
    if not isinstance(node, dict) or not segments:
        return

    head, rest = segments[0], segments[1:]

    if head.endswith("[]"):
        elements = node.get(head[:-2])
        if not isinstance(elements, list) or not rest:
            return
        for element in elements:
            yield from _walk(element, rest, element if isinstance(element, dict) else owner)
        return

    if not rest:
        if node.get(head):
            yield Slot(container=node, key=head, owner=owner)
        return

    yield from _walk(node.get(head), rest, owner)


def count_list_slots(data: Dict[str, Any], fields: Tuple[AssetField, ...]) -> int:
    """Count the nested list locations that will be visited for ``fields``."""
    return sum(len(list(iter_slots(data, field.path))) for field in fields if field.is_list)
