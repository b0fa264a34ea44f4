"""ZIP container holding the adventure manifest, folders, documents and binaries."""

import fnmatch
import io
import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from adventure.models import AdventureManifest, FolderRecord
from exceptions import ArchiveFormatError, ManifestMissingError, PackagingError

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "adventure.json"
FOLDERS_ENTRY = "folders.json"


class ArchiveWriter:
    """Buffers archive entries in memory until :meth:`build` is called."""

    def __init__(self):
        self._entries: Dict[str, bytes] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def write_text(self, path: str, text: str) -> None:
        """Add a UTF-8 text entry, replacing any previous entry at ``path``."""
        self._entries[path] = text.encode("utf-8")

    def write_binary(self, path: str, content: bytes) -> None:
        """Add a binary entry, replacing any previous entry at ``path``."""
        self._entries[path] = bytes(content)

    def read(self, path: str) -> bytes:
        """Return a buffered entry."""
        return self._entries[path]

    def build(self) -> bytes:
        """
        Compress all buffered entries into a ZIP archive.

        Returns:
            The archive bytes

        Raises:
            PackagingError: If the container cannot be generated
        """
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for path, content in self._entries.items():
                    archive.writestr(path, content)
        except (OSError, ValueError, zipfile.LargeZipFile) as e:
            logger.error(f"Failed to build adventure archive: {e}")
            raise PackagingError(f"Failed to build adventure archive: {e}") from e

        logger.debug(f"Built archive with {len(self._entries)} entries")
        return buffer.getvalue()


class ArchiveReader:
    """Read-only view over a packed adventure."""

    def __init__(self, archive: zipfile.ZipFile):
        self._archive = archive
        self._names = set(archive.namelist())

    @classmethod
    def open(cls, source: Union[str, Path, bytes]) -> "ArchiveReader":
        """
        Open an archive from a path or raw bytes.

        Raises:
            ArchiveFormatError: If the source is not a readable ZIP container
        """
        try:
            if isinstance(source, (bytes, bytearray)):
                archive = zipfile.ZipFile(io.BytesIO(source))
            else:
                archive = zipfile.ZipFile(Path(source))
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveFormatError(f"Cannot read adventure archive: {e}") from e
        return cls(archive)

    def close(self) -> None:
        self._archive.close()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __contains__(self, path: str) -> bool:
        return path in self._names

    def read_json(self, path: str) -> Any:
        """Parse a JSON entry."""
        try:
            return json.loads(self._archive.read(path).decode("utf-8"))
        except KeyError as e:
            raise ArchiveFormatError(f"Archive entry not found: {path}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveFormatError(f"Archive entry {path} is not valid JSON: {e}") from e

    def read_binary(self, path: str) -> Optional[bytes]:
        """Read a binary entry, or None when it does not exist."""
        if path not in self._names:
            return None
        return self._archive.read(path)

    def read_manifest(self) -> AdventureManifest:
        """
        Parse adventure.json.

        Raises:
            ManifestMissingError: If the archive has no manifest
            ArchiveFormatError: If the manifest is malformed
        """
        if MANIFEST_ENTRY not in self._names:
            raise ManifestMissingError(f"Archive has no {MANIFEST_ENTRY}")
        data = self.read_json(MANIFEST_ENTRY)
        try:
            return AdventureManifest.model_validate(data)
        except ValueError as e:
            raise ArchiveFormatError(f"Invalid {MANIFEST_ENTRY}: {e}") from e

    def read_folders(self) -> List[FolderRecord]:
        """Parse folders.json in listed order; an absent listing means no folders."""
        if FOLDERS_ENTRY not in self._names:
            return []
        records = []
        for data in self.read_json(FOLDERS_ENTRY):
            try:
                records.append(FolderRecord.model_validate(data))
            except ValueError as e:
                logger.warning(f"Skipping malformed folder record: {e}")
        return records

    def documents(self, kind: str) -> Iterator[Tuple[str, str]]:
        """
        Yield (document id, entry path) for every document of ``kind``.

        Only JSON files directly under the kind's directory are documents;
        binaries live one level deeper.
        """
        prefix = f"{kind}/"
        for name in sorted(self._names):
            if not name.startswith(prefix) or not name.endswith(".json"):
                continue
            relative = name[len(prefix):]
            if "/" in relative:
                continue
            yield relative[:-len(".json")], name

    def match(self, pattern: str) -> List[str]:
        """List entries matching a glob pattern such as ``actor/token/abc/*.png``."""
        return sorted(name for name in self._names if fnmatch.fnmatchcase(name, pattern))
