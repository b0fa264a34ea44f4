"""Classification of asset references and wildcard expansion."""

import logging
import posixpath
import re
from typing import List, Optional, Sequence, Tuple

from adventure.models import AssetKind, ResolvedAsset

logger = logging.getLogger(__name__)

# Marks a reference intentionally left unresolved (external or core asset)
SENTINEL = "*"
WILDCARD = "*"

_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")


def is_remote(reference: str) -> bool:
    """Check whether a reference is an absolute URL rather than a storage path."""
    return bool(_URL_SCHEME.match(reference)) or reference.startswith("data:")


def strip_sentinel(reference: str) -> str:
    """Remove any leading sentinel characters."""
    return reference.lstrip(SENTINEL)


def mark_external(reference: str) -> str:
    """Prefix a reference with exactly one sentinel."""
    return f"{SENTINEL}{strip_sentinel(reference)}"


def split_reference(reference: str) -> Tuple[str, str]:
    """
    Split a reference into (directory, filename).

    Both forward and back slashes separate directories.

    Example:
        >>> split_reference("tokens/goblins/goblin.png")
        ('tokens/goblins', 'goblin.png')
    """
    normalised = reference.replace("\\", "/")
    directory, _, filename = normalised.rpartition("/")
    return directory, filename


def resolve(reference: Optional[str], core_prefixes: Sequence[str] = ()) -> ResolvedAsset:
    """
    Classify an asset reference.

    Args:
        reference: Path or URL found in a document
        core_prefixes: Storage prefixes of core-library assets that are never packed

    Returns:
        ResolvedAsset with kind EMPTY, EXTERNAL, WILDCARD or LOCAL
    """
    if not reference or not isinstance(reference, str):
        return ResolvedAsset(kind=AssetKind.EMPTY)

    if reference.startswith(SENTINEL):
        return ResolvedAsset(kind=AssetKind.EXTERNAL, path=strip_sentinel(reference))

    remote = is_remote(reference)
    _, filename = split_reference(reference)
    if WILDCARD in filename:
        return ResolvedAsset(kind=AssetKind.WILDCARD, path=reference, remote=remote)

    if remote:
        return ResolvedAsset(kind=AssetKind.EXTERNAL, path=reference, remote=True)

    if any(reference.startswith(prefix) for prefix in core_prefixes):
        return ResolvedAsset(kind=AssetKind.EXTERNAL, path=reference)

    return ResolvedAsset(kind=AssetKind.LOCAL, path=reference)


def wildcard_extensions(pattern: str) -> List[str]:
    """
    Derive the extension filter for a wildcard filename.

    Example:
        >>> wildcard_extensions("tokens/goblin-*.png")
        ['.png']
    """
    _, filename = split_reference(pattern)
    suffix = posixpath.splitext(filename)[1]
    if suffix and WILDCARD not in suffix:
        return [suffix]
    return []


async def expand_wildcard(storage, pattern: str) -> List[str]:
    """
    List the local files matching a wildcard reference.

    Args:
        storage: StorageBackend used to browse the pattern's directory
        pattern: Wildcard reference such as "tokens/goblin-*.png"

    Returns:
        Matching file paths (empty for remote patterns, which cannot be enumerated)
    """
    if is_remote(pattern):
        logger.debug(f"Skipping wildcard enumeration of remote pattern {pattern}")
        return []

    listing = await storage.browse(
        "data",
        pattern,
        extensions=wildcard_extensions(pattern),
        wildcard=True
    )
    logger.debug(f"Wildcard {pattern} matched {len(listing.files)} file(s)")
    return list(listing.files)
