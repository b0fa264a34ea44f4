"""Relocation of binary asset references between live storage and the archive."""

import logging
import posixpath
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote

from adventure.context import ExportContext, ImportContext
from adventure.helpers import RICH_TEXT_ASSET_PATTERN, replace_async, strip_query
from adventure.models import AssetKind
from adventure.resolver import (
    SENTINEL,
    WILDCARD,
    expand_wildcard,
    is_remote,
    mark_external,
    resolve,
    split_reference,
    strip_sentinel,
)
from foundry.storage import verify_path
from exceptions import StorageError, StorageUploadRejectedError, StorageUploadTooLargeError

logger = logging.getLogger(__name__)


async def export_asset(
    ctx: ExportContext,
    reference: str,
    kind: str,
    owner_id: str,
    image_kind: str = "images",
    pinned: bool = False
) -> str:
    """
    Pack one local asset into the archive, at most once per export run.

    Args:
        ctx: Export run context
        reference: Live storage path of the asset
        kind: Document kind directory (e.g. "scene")
        owner_id: Id of the document or embedded element owning the asset
        image_kind: Asset kind directory (e.g. "tokenimage")
        pinned: The asset must exist under this owner's directory even when it
            was already packed elsewhere (wildcard members are matched by directory)

    Returns:
        Archive path of the asset, or a sentinel-marked reference when it cannot be read
    """
    cached = ctx.assets.get(reference)
    if cached:
        if pinned:
            _, filename = split_reference(unquote(reference))
            archive_path = f"{kind}/{image_kind}/{owner_id}/{filename}"
            if archive_path != cached and archive_path not in ctx.archive:
                ctx.archive.write_binary(archive_path, ctx.archive.read(cached))
                ctx.assets.claim(archive_path, reference)
            return archive_path
        logger.debug(f"Reusing packed asset {reference} → {cached}")
        return cached

    path = unquote(reference)
    try:
        content = await ctx.storage.read_binary(reference)
    except StorageError as e:
        logger.warning(
            f"Warning during {image_kind} export. {reference} is not in the data folder "
            f"or could be a core image: {e}"
        )
        return mark_external(path)

    _, filename = split_reference(path)
    archive_path = _free_archive_path(ctx, reference, f"{kind}/{image_kind}/{owner_id}", filename)
    ctx.archive.write_binary(archive_path, content)
    ctx.assets.assign(reference, archive_path)
    logger.debug(f"Packed {reference} → {archive_path}")
    return archive_path


def _free_archive_path(ctx: ExportContext, reference: str, directory: str, filename: str) -> str:
    """
    Pick an archive path in ``directory`` not already holding another reference's bytes.

    Example:
        Two owned items both using ``.../spells/fire_01.jpg`` and ``.../skills/fire_01.jpg``
        are packed as ``fire_01.jpg`` and ``fire_01-2.jpg``.
    """
    stem, extension = posixpath.splitext(filename)
    candidate = f"{directory}/{filename}"
    suffix = 1
    while candidate in ctx.archive and ctx.assets.owner(candidate) != reference:
        suffix += 1
        candidate = f"{directory}/{stem}-{suffix}{extension}"
    if suffix > 1:
        logger.debug(f"{directory}/{filename} already holds another asset, packing {reference} as {candidate}")
    return candidate


async def relocate_reference(
    ctx: ExportContext,
    reference: Optional[str],
    kind: str,
    owner_id: str,
    image_kind: str = "images",
    fallback: Optional[str] = None
) -> Optional[str]:
    """
    Rewrite one reference found in a document for the archive.

    External references are sentinel-marked, local ones packed, and wildcard
    ones expanded into every matching file. A remote wildcard cannot be listed,
    so ``fallback`` (the document's primary image) is used instead.
    """
    resolved = resolve(reference, ctx.core_prefixes)

    if resolved.kind == AssetKind.EMPTY:
        return reference

    if resolved.kind == AssetKind.EXTERNAL:
        return mark_external(resolved.path)

    if resolved.kind == AssetKind.WILDCARD:
        if resolved.remote:
            logger.debug(f"Cannot enumerate remote wildcard {reference}, using fallback {fallback}")
            return fallback if fallback else mark_external(resolved.path)

        try:
            files = await expand_wildcard(ctx.storage, resolved.path)
        except StorageError as e:
            logger.warning(f"Could not expand wildcard {reference}: {e}")
            return mark_external(resolved.path)

        logger.debug(f"Found wildcard image {reference}, packing {len(files)} files")
        ctx.progress.grow(len(files))
        for file_path in files:
            await export_asset(ctx, file_path, kind, owner_id, image_kind, pinned=True)
            ctx.progress.advance(f"{kind}-{owner_id}")

        _, pattern = split_reference(unquote(resolved.path))
        return f"{kind}/{image_kind}/{owner_id}/{pattern}"

    return await export_asset(ctx, resolved.path, kind, owner_id, image_kind)


async def restore_asset(ctx: ImportContext, path: Optional[str]) -> Optional[str]:
    """
    Restore one archive reference to live storage, at most once per import run.

    Sentinel-marked references are returned without the sentinel and without
    touching storage. Archive paths are uploaded under the adventure's storage
    directory and the live path is returned. Upload rejections are surfaced to
    the user and the original path is kept.
    """
    if not path or not isinstance(path, str):
        return path

    if path.startswith(SENTINEL):
        return strip_sentinel(path)

    if is_remote(path):
        return path

    directory, filename = split_reference(path)
    live_dir = f"{ctx.adventure_root}/{directory}" if directory else ctx.adventure_root
    clean_path = f"{live_dir}/{strip_query(filename)}"

    if path in ctx.imported:
        logger.debug(f"Already imported: {clean_path}")
        return clean_path

    entries = ctx.reader.match(path) if WILDCARD in filename else [path]

    try:
        await verify_path(ctx.storage, live_dir)
        restored = False
        for entry in entries:
            content = ctx.reader.read_binary(entry)
            if content is None:
                logger.warning(f"Image file not found in archive: {entry}")
                continue
            _, entry_name = split_reference(entry)
            await ctx.storage.upload_file("data", live_dir, strip_query(entry_name), content)
            ctx.uploaded += 1
            restored = True
        if restored:
            ctx.imported.add(path)
            logger.debug(f"Imported: {clean_path}")
    except (StorageUploadTooLargeError, StorageUploadRejectedError) as e:
        logger.error(f"Error importing image file {path} : {e}")
        ctx.errors.append(str(e))
        ctx.progress.notify_error(str(e))
        return path
    except StorageError as e:
        logger.error(f"Error importing image file {path} : {e}")
        return path

    return clean_path


async def rewrite_rich_text(text: str, relocate: Callable[[str], Awaitable[str]]) -> str:
    """
    Rewrite every non-http ``src=``/``href=`` value in rich text.

    Args:
        text: HTML content
        relocate: Coroutine mapping an old reference to its new one

    Returns:
        Text with each matched attribute value replaced in place
    """
    async def _replace(match) -> str:
        attribute, value = match.group(1), match.group(2)
        if not value:
            return match.group(0)
        return f'{attribute}="{await relocate(value)}"'

    return await replace_async(text, RICH_TEXT_ASSET_PATTERN, _replace)
