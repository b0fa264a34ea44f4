"""Adventure import pipeline.

Recreates an adventure archive inside a live world:

    Idle → ReadManifest → BuildFolderTree → PerDocument → Done | Aborted

Folders are rebuilt breadth-first so every parent exists before its children.
Documents are created kind by kind in IMPORT_ORDER; references between them are
remapped through the run's translation table, and links to documents created
later are fixed up in a final link pass.
"""

import copy
import logging
import re
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from adventure.archive import ArchiveReader
from adventure.assets import restore_asset, rewrite_rich_text
from adventure.context import ImportContext
from adventure.descriptors import (
    DOCUMENT_NAMES,
    IMPORT_ORDER,
    AssetField,
    DocumentDescriptor,
    get_descriptor,
    iter_slots,
)
from adventure.helpers import build_update_data
from adventure.models import (
    DocumentFailure,
    DocumentKind,
    FolderRecord,
    ImportResult,
    ImportState,
)
from adventure.progress import ProgressReporter
from config import get_max_folder_depth
from exceptions import ArchiveFormatError, DocumentImportError, FoundryError

logger = logging.getLogger(__name__)

# @Actor[id], @JournalEntry[id], @UUID[JournalEntry.id], @Compendium[pack.id]
CONTENT_LINK_PATTERN = re.compile(r"@(\w+)\[([^\]]+)\]")


class _PendingLinks:
    """A created document whose references could not all be translated yet."""

    def __init__(self, kind: DocumentKind, document_id: str, source: Dict[str, Any], created: Dict[str, Any]):
        self.kind = kind
        self.document_id = document_id
        self.source = source
        self.created = created


class AdventureImporter:
    """Recreates an adventure archive's folders, documents and binaries in a world."""

    def __init__(
        self,
        client,
        storage,
        world_id: str,
        reporter: Optional[ProgressReporter] = None,
        max_folder_depth: Optional[int] = None
    ):
        """
        Initialize the importer.

        Args:
            client: WorldClient (or compatible) used to create folders and documents
            storage: StorageBackend receiving the adventure's binaries
            world_id: Id of the target world, used in storage paths
            reporter: Optional progress sink
            max_folder_depth: Host folder nesting limit (defaults to FOLDER_MAX_DEPTH)
        """
        self.client = client
        self.storage = storage
        self.world_id = world_id
        self.reporter = reporter
        self.max_folder_depth = max_folder_depth or get_max_folder_depth()
        self.state = ImportState.IDLE

    def _transition(self, state: ImportState) -> None:
        logger.debug(f"Import state: {self.state.value} → {state.value}")
        self.state = state

    async def import_archive(self, source: Union[str, Path, bytes]) -> ImportResult:
        """
        Import an adventure archive into the world.

        Args:
            source: Path to a .fvttadv file or its raw bytes

        Returns:
            ImportResult with counts, per-document failures and surfaced errors

        Raises:
            ArchiveFormatError: If the archive cannot be read
            ManifestMissingError: If the archive has no adventure.json
            FoundryError: If the world's folders cannot be listed
        """
        result = ImportResult(state=self.state)

        self._transition(ImportState.READ_MANIFEST)
        try:
            reader = ArchiveReader.open(source)
        except ArchiveFormatError as e:
            logger.error(f"Cannot read adventure archive: {e}")
            self._transition(ImportState.ABORTED)
            raise

        try:
            manifest = reader.read_manifest()
        except ArchiveFormatError as e:
            logger.error(f"Cannot read adventure manifest: {e}")
            reader.close()
            self._transition(ImportState.ABORTED)
            raise

        logger.info(f"Importing adventure '{manifest.name}' ({manifest.id})")
        result.manifest = manifest
        ctx = ImportContext(reader, manifest, self.storage, self.world_id, self.reporter)

        try:
            self._transition(ImportState.BUILD_FOLDER_TREE)
            await self._build_folder_tree(ctx, reader.read_folders(), result)

            self._transition(ImportState.PER_DOCUMENT)
            documents = [
                (kind, document_id, entry)
                for kind in IMPORT_ORDER
                for document_id, entry in reader.documents(kind.value)
            ]
            ctx.progress.grow(len(documents))

            pending: List[_PendingLinks] = []
            for kind, document_id, entry in documents:
                try:
                    await self._import_document(ctx, kind, document_id, entry, result, pending)
                except Exception as e:
                    logger.error(f"Error importing {kind.value} {document_id}: {e}")
                    result.failures.append(
                        DocumentFailure(kind=kind.value, id=document_id, error=str(e))
                    )
                ctx.progress.advance(kind.value)

            await self._link_pass(ctx, pending, result)

            result.assets_uploaded = ctx.uploaded
            result.errors.extend(ctx.errors)
            result.translations = ctx.translations.as_dict()
            self._transition(ImportState.DONE)
            result.state = self.state
            logger.info(
                f"Imported '{manifest.name}': {result.documents_created} created, "
                f"{result.documents_updated} updated, {result.assets_uploaded} asset(s), "
                f"{len(result.failures)} failure(s)"
            )
            return result

        except Exception:
            self._transition(ImportState.ABORTED)
            result.state = self.state
            raise
        finally:
            ctx.close()
            reader.close()

    # Folders

    async def _build_folder_tree(
        self, ctx: ImportContext, records: List[FolderRecord], result: ImportResult
    ) -> None:
        ctx.live_folders = list(await self.client.list_folders())
        for folder in ctx.live_folders:
            ctx.folder_tree[_folder_id(folder)] = _folder_parent(folder)

        by_id = {record.id: record for record in records}
        children: Dict[str, List[FolderRecord]] = {}
        queue = deque()
        for record in records:
            if record.parent and record.parent in by_id:
                children.setdefault(record.parent, []).append(record)
            else:
                queue.append(record)

        logger.info(f"Importing {len(records)} folders")
        ctx.progress.grow(len(records))

        while queue:
            record = queue.popleft()
            try:
                await self._import_folder(ctx, record, result)
            except FoundryError as e:
                logger.error(f"Error importing folder {record.name} ({record.id}): {e}")
                result.errors.append(str(e))
            ctx.progress.advance("folders")
            queue.extend(children.get(record.id, []))

    async def _import_folder(self, ctx: ImportContext, record: FolderRecord, result: ImportResult) -> None:
        existing = self._find_live_folder(ctx, record)
        if existing is not None:
            new_id = _folder_id(existing)
            result.folders_reused += 1
            logger.debug(f"Reusing folder {record.name} ({new_id})")
        else:
            parent_id = await self._resolve_parent(ctx, record)
            created = await self.client.create_folder(record.to_create_payload(parent_id))
            new_id = _folder_id(created)
            ctx.live_folders.append(created)
            ctx.folder_tree[new_id] = parent_id
            result.folders_created += 1
            logger.debug(f"Created new folder {new_id} for {record.name}")

        ctx.translations.record("folder", record.import_id, new_id)
        if record.id != record.import_id:
            ctx.translations.record("folder", record.id, new_id)

    def _find_live_folder(self, ctx: ImportContext, record: FolderRecord) -> Optional[Dict[str, Any]]:
        for folder in ctx.live_folders:
            if folder.get("type") != record.type:
                continue
            if record.import_id in (_folder_id(folder), (folder.get("flags") or {}).get("importid")):
                return folder
        return None

    async def _resolve_parent(self, ctx: ImportContext, record: FolderRecord) -> Optional[str]:
        if record.parent and ctx.translations.has("folder", record.parent):
            parent_id = ctx.translations.lookup("folder", record.parent)
        elif ctx.preserve_folders:
            parent_id = None
        else:
            parent_id = await self._default_root(ctx, record.type)
        return self._flatten(ctx, parent_id)

    def _flatten(self, ctx: ImportContext, parent_id: Optional[str]) -> Optional[str]:
        """Move ``parent_id`` up the tree until a child of it fits under the depth limit."""
        while parent_id and self._depth(ctx, parent_id) >= self.max_folder_depth:
            logger.debug(f"Folder {parent_id} is at max depth, attaching to its parent")
            parent_id = ctx.folder_tree.get(parent_id)
        return parent_id

    @staticmethod
    def _depth(ctx: ImportContext, folder_id: str) -> int:
        depth = 0
        seen = set()
        current: Optional[str] = folder_id
        while current and current not in seen:
            seen.add(current)
            depth += 1
            current = ctx.folder_tree.get(current)
        return depth

    async def _default_root(self, ctx: ImportContext, folder_type: str) -> str:
        """Folder named after the adventure that holds everything of one type."""
        if folder_type in ctx.default_roots:
            return ctx.default_roots[folder_type]

        for folder in ctx.live_folders:
            if folder.get("type") == folder_type and (folder.get("flags") or {}).get("importid") == ctx.manifest.id:
                root_id = _folder_id(folder)
                break
        else:
            created = await self.client.create_folder({
                "name": ctx.manifest.name,
                "type": folder_type,
                "folder": None,
                "flags": {"importid": ctx.manifest.id}
            })
            root_id = _folder_id(created)
            ctx.live_folders.append(created)
            ctx.folder_tree[root_id] = None
            logger.info(f"Created {folder_type} folder '{ctx.manifest.name}'")

        ctx.default_roots[folder_type] = root_id
        return root_id

    # Documents

    async def _import_document(
        self,
        ctx: ImportContext,
        kind: DocumentKind,
        document_id: str,
        entry: str,
        result: ImportResult,
        pending: List[_PendingLinks]
    ) -> None:
        data = ctx.reader.read_json(entry)
        if not isinstance(data, dict):
            raise DocumentImportError(kind.value, document_id, "document is not a JSON object")

        if kind == DocumentKind.COMPENDIUM:
            await self._import_compendium(ctx, document_id, data, result)
            return

        descriptor = get_descriptor(kind)
        logger.info(f"Importing {kind.value} : {data.get('name')}")
        ctx.progress.report(f"{kind.value}-{data.get('name')}")

        await self._restore_assets(ctx, data, descriptor.asset_fields)
        for path in descriptor.rich_text_fields:
            for slot in list(iter_slots(data, path)):
                if isinstance(slot.value, str):
                    slot.value = await rewrite_rich_text(slot.value, lambda ref: restore_asset(ctx, ref))

        await self._remap_folder(ctx, descriptor, data)

        source = copy.deepcopy(data)
        unresolved = self._remap_references(ctx, descriptor, data)

        import_id = str(data.pop("_id", None) or data.pop("id", None) or document_id)
        data.pop("id", None)
        data.setdefault("flags", {})["importid"] = import_id

        existing = await self.client.find_document_by_import_id(kind, import_id)
        if existing is not None:
            new_id = str(existing.get("_id") or existing.get("id"))
            await self.client.update_document(kind, new_id, build_update_data(data))
            result.documents_updated += 1
            logger.debug(f"Updated existing {kind.value} {new_id} from {import_id}")
        else:
            created = await self.client.create_document(kind, data)
            new_id = str(created.get("_id") or created.get("id"))
            result.documents_created += 1

        ctx.translations.record(kind.value, import_id, new_id)
        if unresolved:
            pending.append(_PendingLinks(kind, new_id, source, data))

    async def _import_compendium(
        self, ctx: ImportContext, pack_id: str, data: Dict[str, Any], result: ImportResult
    ) -> None:
        descriptor = get_descriptor(DocumentKind.COMPENDIUM)
        info = data.get("info") or {}
        label = info.get("label") or pack_id
        document_type = info.get("type") or info.get("entity") or "Item"

        logger.info(f"Importing compendium : {label}")
        ctx.progress.report(f"compendium-{label}")

        pack = await self.client.get_or_create_compendium(document_type, label)
        live_pack_id = pack.get("collection") or pack.get("id")
        ctx.translations.record("compendium", pack_id, live_pack_id)

        entries = data.get(descriptor.entries_path) or []
        ctx.progress.grow(len(entries))
        for entry in entries:
            entry_id = entry.pop("_id", None) or entry.pop("id", None)
            await self._restore_assets(ctx, entry, descriptor.entry_fields)
            if entry_id:
                entry.setdefault("flags", {})["importid"] = entry_id
            created = await self.client.create_compendium_entry(live_pack_id, document_type, entry)
            if entry_id:
                ctx.translations.record("compendium_entry", entry_id, str(created.get("_id") or created.get("id")))
            result.documents_created += 1
            ctx.progress.advance(f"compendium-{label}")

    async def _restore_assets(
        self, ctx: ImportContext, data: Dict[str, Any], fields: Tuple[AssetField, ...]
    ) -> None:
        for field in fields:
            for slot in list(iter_slots(data, field.path)):
                slot.value = await restore_asset(ctx, slot.value)

    async def _remap_folder(self, ctx: ImportContext, descriptor: DocumentDescriptor, data: Dict[str, Any]) -> None:
        folder = data.get("folder")
        translated = ctx.translations.lookup("folder", folder)
        if translated:
            data["folder"] = translated
        elif ctx.preserve_folders:
            data["folder"] = None
        else:
            data["folder"] = await self._default_root(ctx, descriptor.document_name)

    def _remap_references(
        self, ctx: ImportContext, descriptor: DocumentDescriptor, data: Dict[str, Any]
    ) -> bool:
        """
        Translate id references and content links in place.

        Returns:
            True if any reference is still untranslated
        """
        unresolved = False

        for field in descriptor.reference_fields:
            for slot in list(iter_slots(data, field.path)):
                translated = ctx.translations.lookup(field.target.value, slot.value)
                if translated:
                    slot.value = translated
                else:
                    unresolved = True

        def _replace(match: re.Match) -> str:
            nonlocal unresolved
            link_type, target = match.group(1), match.group(2)
            translated = self._translate_link(ctx, link_type, target)
            if translated is None:
                unresolved = True
                return match.group(0)
            return f"@{link_type}[{translated}]"

        for path in descriptor.rich_text_fields:
            for slot in list(iter_slots(data, path)):
                if isinstance(slot.value, str):
                    slot.value = CONTENT_LINK_PATTERN.sub(_replace, slot.value)

        return unresolved

    def _translate_link(self, ctx: ImportContext, link_type: str, target: str) -> Optional[str]:
        if link_type == "Compendium":
            return self._translate_compendium_link(ctx, target)

        if link_type == "UUID":
            document_name, _, path = target.partition(".")
            if document_name == "Compendium":
                translated = self._translate_compendium_link(ctx, path)
                return f"Compendium.{translated}" if translated else None
            # Embedded parts such as ".JournalEntryPage.<pageId>" keep their ids
            document_id, sep, embedded = path.partition(".")
            kind = DOCUMENT_NAMES.get(document_name)
            translated = ctx.translations.lookup(kind.value, document_id) if kind else None
            return f"{document_name}.{translated}{sep}{embedded}" if translated else None

        kind = DOCUMENT_NAMES.get(link_type)
        if kind is None:
            return target
        return ctx.translations.lookup(kind.value, target)

    @staticmethod
    def _translate_compendium_link(ctx: ImportContext, target: str) -> Optional[str]:
        """Translate "pack.id" or "pack.DocumentName.id"."""
        parts = target.split(".")
        if len(parts) < 2:
            return None
        entry_id = parts[-1]
        document_name = parts[-2] if len(parts) > 2 and parts[-2] in DOCUMENT_NAMES else None
        pack_id = ".".join(parts[:-2] if document_name else parts[:-1])

        live_pack = ctx.translations.lookup("compendium", pack_id)
        live_entry = ctx.translations.lookup("compendium_entry", entry_id)
        if not live_pack and not live_entry:
            return None

        translated = [live_pack or pack_id]
        if document_name:
            translated.append(document_name)
        translated.append(live_entry or entry_id)
        return ".".join(translated)

    async def _link_pass(self, ctx: ImportContext, pending: List[_PendingLinks], result: ImportResult) -> None:
        """Update documents whose references pointed at documents created after them."""
        for item in pending:
            descriptor = get_descriptor(item.kind)
            remapped = copy.deepcopy(item.source)
            self._remap_references(ctx, descriptor, remapped)

            keys = {
                path.split(".")[0].replace("[]", "")
                for path in [f.path for f in descriptor.reference_fields] + list(descriptor.rich_text_fields)
            }
            updates = {
                key: remapped[key]
                for key in keys
                if key in remapped and remapped[key] != item.created.get(key)
            }
            if not updates:
                continue

            try:
                await self.client.update_document(item.kind, item.document_id, updates)
                result.links_updated += 1
                logger.debug(f"Updated links of {item.kind.value} {item.document_id}: {sorted(updates)}")
            except FoundryError as e:
                logger.error(f"Error updating links of {item.kind.value} {item.document_id}: {e}")
                result.failures.append(
                    DocumentFailure(kind=item.kind.value, id=item.document_id, error=str(e))
                )


def _folder_id(folder: Dict[str, Any]) -> str:
    return str(folder.get("_id") or folder.get("id"))


def _folder_parent(folder: Dict[str, Any]) -> Optional[str]:
    parent = folder.get("folder", folder.get("parent"))
    if isinstance(parent, dict):
        parent = parent.get("_id") or parent.get("id")
    return parent


async def import_adventure(client, storage, world_id: str, source: Union[str, Path, bytes], **kwargs) -> ImportResult:
    """Run one import with a fresh importer; see AdventureImporter.import_archive."""
    importer = AdventureImporter(client, storage, world_id, **kwargs)
    return await importer.import_archive(source)
