"""Adventure export pipeline.

Walks the selected world documents, packs every referenced binary into the
archive once, and writes the rewritten documents, the folder listing and the
adventure manifest:

    Idle → CollectingSelection → PerDocument → FolderPass → ManifestPass
         → Packaging → Done | Aborted

A document that fails to export is logged and skipped; the run continues.
"""

import copy
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from adventure.archive import FOLDERS_ENTRY, MANIFEST_ENTRY
from adventure.assets import relocate_reference, rewrite_rich_text
from adventure.context import ExportContext
from adventure.descriptors import AssetField, count_list_slots, get_descriptor, iter_slots
from adventure.helpers import export_to_json, random_id, sanitize_filename, strip_query
from adventure.models import (
    AdventureManifest,
    DocumentFailure,
    DocumentKind,
    ExportResult,
    ExportState,
    ManifestOptions,
    Selection,
)
from adventure.progress import ProgressReporter
from config import ARCHIVE_EXTENSION, SCHEMA_VERSION, get_core_asset_prefixes, get_max_folder_depth
from exceptions import DocumentExportError, PackagingError

logger = logging.getLogger(__name__)

MAX_DEPTH_WARNING = (
    "There are folders at the max depth, if you wish to retain the folder "
    "structure be sure to check the option."
)


class AdventureExporter:
    """Packs selected world documents into an adventure archive."""

    def __init__(
        self,
        client,
        storage,
        reporter: Optional[ProgressReporter] = None,
        max_folder_depth: Optional[int] = None,
        core_prefixes: Optional[Sequence[str]] = None
    ):
        """
        Initialize the exporter.

        Args:
            client: WorldClient (or compatible) supplying documents, folders and world info
            storage: StorageBackend used to read binaries
            reporter: Optional progress sink
            max_folder_depth: Host folder nesting limit (defaults to FOLDER_MAX_DEPTH)
            core_prefixes: Core-library path prefixes never packed (defaults to CORE_ASSET_PREFIXES)
        """
        self.client = client
        self.storage = storage
        self.reporter = reporter
        self.max_folder_depth = max_folder_depth or get_max_folder_depth()
        self.core_prefixes = tuple(core_prefixes) if core_prefixes is not None else get_core_asset_prefixes()
        self.state = ExportState.IDLE
        self._cancelled = False

    def cancel(self) -> None:
        """Request the run to stop after the document in progress."""
        self._cancelled = True

    def _transition(self, state: ExportState) -> None:
        logger.debug(f"Export state: {self.state.value} → {state.value}")
        self.state = state

    async def export(
        self,
        selection: Iterable[Selection],
        name: Optional[str] = None,
        description: str = "",
        preserve_folders: bool = False,
        output_dir: Optional[Path] = None
    ) -> ExportResult:
        """
        Export the selected documents to an adventure archive.

        Args:
            selection: (kind, id) pairs to export, in order
            name: Adventure name (defaults to "Adventure <epoch ms>")
            description: Adventure description
            preserve_folders: Recorded as options.folders for the importer
            output_dir: When given, the archive is written there as <name>.fvttadv

        Returns:
            ExportResult holding the archive bytes and per-document outcome

        Raises:
            PackagingError: If the archive cannot be generated or written
            FoundryError: If world info or the folder listing cannot be read
        """
        selection = list(selection)
        name = name or f"Adventure {int(time.time() * 1000)}"
        filename = f"{sanitize_filename(name)}{ARCHIVE_EXTENSION}"

        self._cancelled = False
        ctx = ExportContext(self.storage, self.reporter, self.core_prefixes)
        result = ExportResult(state=self.state, filename=filename)

        try:
            self._transition(ExportState.COLLECTING_SELECTION)
            ctx.progress.grow(len(selection))
            logger.info(f"Retrieving current game data for {len(selection)} selected document(s)")
            world = await self.client.get_world_info()
            folders = await self.client.list_folders()
            result.warnings.extend(self.check_folder_depth(folders))

            self._transition(ExportState.PER_DOCUMENT)
            for item in selection:
                if self._cancelled:
                    logger.warning(f"Export of '{name}' cancelled")
                    self._transition(ExportState.ABORTED)
                    result.state = self.state
                    return result

                try:
                    await self._export_document(ctx, item, world)
                    result.exported.append(item)
                except Exception as e:
                    logger.error(f"Error during main export {item.id} - {item.kind.value}: {e}")
                    result.failures.append(
                        DocumentFailure(kind=item.kind.value, id=item.id, error=str(e))
                    )
                ctx.progress.advance(item.kind.value)

            self._transition(ExportState.FOLDER_PASS)
            logger.info(f"Exporting {len(folders)} folders")
            ctx.progress.report("folders")
            ctx.archive.write_text(FOLDERS_ENTRY, export_to_json(self.folder_listing(folders)))
            result.folders_exported = len(folders)

            self._transition(ExportState.MANIFEST_PASS)
            logger.info("Adventure Metadata")
            ctx.progress.report("adventure metadata")
            manifest = AdventureManifest(
                id=random_id(),
                name=name,
                description=description,
                system=world.get("system"),
                modules=_active_modules(world.get("modules", [])),
                version=SCHEMA_VERSION,
                options=ManifestOptions(folders=preserve_folders)
            )
            ctx.archive.write_text(MANIFEST_ENTRY, export_to_json(manifest.model_dump()))
            result.manifest = manifest

            self._transition(ExportState.PACKAGING)
            logger.info("Building and preparing adventure file for download")
            ctx.progress.report("building and preparing adventure file for download")
            archive = ctx.archive.build()
            if output_dir is not None:
                result.output_path = _write_archive(Path(output_dir) / filename, archive)

            result.archive = archive
            result.assets_packed = len(ctx.assets)
            self._transition(ExportState.DONE)
            result.state = self.state
            logger.info(
                f"Exported '{name}': {len(result.exported)} document(s), "
                f"{result.assets_packed} asset(s), {len(result.failures)} failure(s)"
            )
            return result

        except Exception:
            self._transition(ExportState.ABORTED)
            result.state = self.state
            raise
        finally:
            ctx.close()

    def check_folder_depth(self, folders: List[Dict[str, Any]]) -> List[str]:
        """Warn when source folders sit at the host's maximum nesting depth."""
        too_deep = [f for f in folders if (f.get("depth") or 0) >= self.max_folder_depth]
        if too_deep:
            logger.warning(f"{len(too_deep)} folder(s) at max depth {self.max_folder_depth}")
            return [MAX_DEPTH_WARNING]
        return []

    @staticmethod
    def folder_listing(folders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Copy every folder, stamping its own id as the import id."""
        listing = []
        for folder in folders:
            record = copy.deepcopy(folder)
            record.setdefault("flags", {})["importid"] = record.get("_id") or record.get("id")
            listing.append(record)
        return listing

    async def _export_document(self, ctx: ExportContext, item: Selection, world: Dict[str, Any]) -> None:
        kind = item.kind
        descriptor = get_descriptor(kind)

        if kind == DocumentKind.COMPENDIUM:
            data = await self._export_compendium(ctx, item)
        else:
            document = await self.client.get_document(kind, item.id)
            if document is None:
                raise DocumentExportError(kind.value, item.id, "document not found")
            data = copy.deepcopy(document)
            logger.info(f"Exporting {kind.value} : {data.get('name')}")
            ctx.progress.report(f"{kind.value}-{data.get('name')}")
            await self._relocate_document(
                ctx, data, descriptor.asset_fields, descriptor.rich_text_fields, kind.value, item.id
            )

        ctx.archive.write_text(f"{kind.value}/{item.id}.json", export_to_json(data, world))

    async def _export_compendium(self, ctx: ExportContext, item: Selection) -> Dict[str, Any]:
        pack = await self.client.get_compendium(item.id)
        if pack is None:
            raise DocumentExportError(item.kind.value, item.id, "compendium not found")

        metadata = pack.get("metadata", {})
        entries = copy.deepcopy(pack.get("entries", []))
        descriptor = get_descriptor(DocumentKind.COMPENDIUM)
        label = f"{item.kind.value}-{metadata.get('label', item.id)}"

        logger.info(f"Exporting {item.kind.value} : {metadata.get('label', item.id)}")
        ctx.progress.report(label)
        ctx.progress.grow(len(entries))

        for entry in entries:
            entry_id = str(entry.get("_id") or entry.get("id"))
            await self._relocate_document(
                ctx, entry, descriptor.entry_fields, (), item.kind.value, entry_id
            )
            ctx.progress.advance(label)

        return {"info": metadata, descriptor.entries_path: entries}

    async def _relocate_document(
        self,
        ctx: ExportContext,
        data: Dict[str, Any],
        fields: Tuple[AssetField, ...],
        rich_text_fields: Tuple[str, ...],
        kind: str,
        document_id: str
    ) -> None:
        """Rewrite every asset reference at the descriptor's paths, in place."""
        label = f"{kind}-{data.get('name')}"
        ctx.progress.grow(count_list_slots(data, fields))

        for field in fields:
            for slot in list(iter_slots(data, field.path)):
                owner_id = slot.owner_id(document_id) if field.key_by == "element" else document_id
                fallback = data.get(field.fallback) if field.fallback else None
                slot.value = await relocate_reference(
                    ctx, slot.value, kind, owner_id, field.image_kind, fallback
                )
                if field.is_list:
                    ctx.progress.advance(label)

        async def _relocate_embedded(reference: str) -> str:
            # Cache-busting queries are not part of the stored file name
            path = strip_query(reference)
            if not path:
                return reference
            return await relocate_reference(ctx, path, kind, document_id)

        for path in rich_text_fields:
            for slot in list(iter_slots(data, path)):
                if isinstance(slot.value, str):
                    slot.value = await rewrite_rich_text(slot.value, _relocate_embedded)


def _active_modules(modules: List[Any]) -> List[str]:
    titles = []
    for module in modules:
        if isinstance(module, str):
            titles.append(module)
        elif isinstance(module, dict) and module.get("active"):
            titles.append(module.get("title") or module.get("id"))
    return titles


def _write_archive(path: Path, archive: bytes) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(archive)
    except OSError as e:
        logger.error(f"Failed to write adventure archive {path}: {e}")
        raise PackagingError(f"Failed to write adventure archive {path}: {e}") from e
    logger.info(f"Wrote adventure archive: {path}")
    return path


async def export_adventure(client, storage, selection: Iterable[Selection], **kwargs) -> ExportResult:
    """Run one export with a fresh exporter; see AdventureExporter.export for arguments."""
    reporter = kwargs.pop("reporter", None)
    exporter = AdventureExporter(client, storage, reporter=reporter)
    return await exporter.export(selection, **kwargs)
