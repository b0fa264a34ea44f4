"""FoundryVTT file storage backends.

Two implementations share the StorageBackend interface:
- RelayStorage: the world's managed "data" storage, reached through the relay API
- ForgeStorage: The Forge asset library, reached through the Forge API

select_storage_backend() picks one from the environment.
"""

import asyncio
import fnmatch
import logging
import mimetypes
import posixpath
import requests
import httpx
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from adventure.models import BrowseResult
from config import (
    get_api_key,
    get_client_id,
    get_forge_api_key,
    get_foundry_url,
    get_relay_url,
    get_storage_target,
)
from exceptions import (
    AssetUnavailableError,
    ConfigurationError,
    StorageError,
    StorageUploadRejectedError,
    StorageUploadTooLargeError,
)

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Capability interface over host file storage."""

    @abstractmethod
    async def browse(
        self,
        source: str,
        target: str,
        extensions: Optional[List[str]] = None,
        wildcard: bool = False
    ) -> BrowseResult:
        """List files and directories at ``target`` (a wildcard pattern when ``wildcard``)."""
        pass

    @abstractmethod
    async def create_directory(self, source: str, path: str) -> None:
        """Create one directory."""
        pass

    @abstractmethod
    async def upload_file(self, source: str, path: str, filename: str, content: bytes) -> Optional[str]:
        """Store ``content`` as ``path/filename``; returns the stored path when the backend reports one."""
        pass

    @abstractmethod
    async def read_binary(self, path: str) -> bytes:
        """Read a stored file."""
        pass


def _filter_listing(
    files: List[str],
    pattern: Optional[str],
    extensions: Optional[List[str]]
) -> List[str]:
    """Apply wildcard and extension filters to a directory listing."""
    matched = []
    filename_pattern = posixpath.basename(pattern) if pattern else None
    for path in files:
        name = posixpath.basename(unquote(path))
        if filename_pattern and not fnmatch.fnmatchcase(name, filename_pattern):
            continue
        if extensions and not any(name.lower().endswith(ext.lower()) for ext in extensions):
            continue
        matched.append(path)
    return matched


class RelayStorage(StorageBackend):
    """Managed world storage accessed through the relay API."""

    def __init__(self, relay_url: str, api_key: str, client_id: str, timeout: float = 60):
        """
        Initialize relay storage.

        Args:
            relay_url: URL of the relay server
            api_key: API key for authentication
            client_id: Client ID for the FoundryVTT instance
            timeout: Request timeout in seconds
        """
        self.relay_url = relay_url
        self.api_key = api_key
        self.client_id = client_id
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key}

    async def browse(
        self,
        source: str,
        target: str,
        extensions: Optional[List[str]] = None,
        wildcard: bool = False
    ) -> BrowseResult:
        return await asyncio.to_thread(self._browse, source, target, extensions, wildcard)

    def _browse(
        self,
        source: str,
        target: str,
        extensions: Optional[List[str]],
        wildcard: bool
    ) -> BrowseResult:
        directory = posixpath.dirname(target) if wildcard else target
        params = {
            "clientId": self.client_id,
            "path": unquote(directory),
            "source": source,
            "recursive": "false"
        }

        logger.debug(f"Browsing {source}:{target}")

        try:
            response = requests.get(
                f"{self.relay_url}/file-system",
                headers=self._headers(),
                params=params,
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to browse '{target}': {e}")
            raise StorageError(f"Failed to browse '{target}': {e}") from e

        files: List[str] = []
        dirs: List[str] = []
        for entry in data.get("results", data.get("files", [])):
            if isinstance(entry, str):
                files.append(entry)
            elif entry.get("type") == "directory":
                dirs.append(entry.get("path", ""))
            else:
                files.append(entry.get("path", ""))
        dirs.extend(data.get("dirs", []))

        return BrowseResult(
            target=directory,
            files=_filter_listing(files, target if wildcard else None, extensions),
            dirs=dirs
        )

    async def create_directory(self, source: str, path: str) -> None:
        await asyncio.to_thread(self._create_directory, source, path)

    def _create_directory(self, source: str, path: str) -> None:
        payload = {"clientId": self.client_id, "source": source, "path": path}
        try:
            response = requests.post(
                f"{self.relay_url}/create-directory",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Failed to create directory '{path}': {e}") from e

        if response.status_code != 200:
            raise StorageError(
                f"Failed to create directory '{path}': {response.status_code} - {response.text}"
            )

    async def upload_file(self, source: str, path: str, filename: str, content: bytes) -> Optional[str]:
        return await asyncio.to_thread(self._upload_file, source, path, filename, content)

    def _upload_file(self, source: str, path: str, filename: str, content: bytes) -> Optional[str]:
        mime_type, _ = mimetypes.guess_type(filename)
        headers = {**self._headers(), "Content-Type": "application/octet-stream"}
        params = {
            "clientId": self.client_id,
            "source": source,
            "path": path,
            "filename": filename,
            "mimeType": mime_type or "application/octet-stream",
            "overwrite": "true"
        }

        logger.debug(f"Uploading {filename} → {path}")

        try:
            response = requests.post(
                f"{self.relay_url}/upload",
                headers=headers,
                params=params,
                data=content,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to upload file '{filename}': {e}")
            raise StorageUploadRejectedError(f"Failed to upload file '{filename}': {e}") from e

        if response.status_code == 413:
            raise StorageUploadTooLargeError(f"File too large to upload: {path}/{filename}")
        if response.status_code != 200:
            raise StorageUploadRejectedError(
                f"Upload of {path}/{filename} rejected: {response.status_code} - {response.text}"
            )

        try:
            return response.json().get("path")
        except ValueError:
            return None

    async def read_binary(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read_binary, path)

    def _read_binary(self, path: str) -> bytes:
        params = {"clientId": self.client_id, "path": unquote(path)}
        try:
            response = requests.get(
                f"{self.relay_url}/download",
                headers=self._headers(),
                params=params,
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise AssetUnavailableError(f"Cannot read '{path}': {e}") from e
        return response.content


class ForgeStorage(StorageBackend):
    """The Forge asset library accessed through the Forge API."""

    def __init__(
        self,
        api_key: str,
        game_url: str,
        api_url: str = "https://forge-vtt.com/api",
        timeout: float = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Forge storage.

        Args:
            api_key: Forge API key
            game_url: URL of the hosted game, used to read world files
            api_url: Base URL of the Forge API
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.game_url = game_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self.transport
        )

    async def _call(self, endpoint: str, **kwargs) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"{self.api_url}/{endpoint}", **kwargs)
        if response.status_code == 413:
            raise StorageUploadTooLargeError(f"Forge rejected {endpoint}: payload too large")
        try:
            data = response.json()
        except ValueError:
            data = None
        if response.status_code != 200 or not data or data.get("error"):
            message = data.get("error") if data else f"HTTP {response.status_code}"
            raise StorageError(message or "An unknown error occurred accessing The Forge API")
        return data

    async def browse(
        self,
        source: str,
        target: str,
        extensions: Optional[List[str]] = None,
        wildcard: bool = False
    ) -> BrowseResult:
        options: Dict[str, Any] = {"extensions": extensions or []}
        if wildcard:
            options["wildcard"] = target
            target = posixpath.dirname(target)

        try:
            data = await self._call("assets/browse", json={"path": unquote(target), "options": options})
        except (StorageError, httpx.HTTPError) as e:
            logger.error(f"Forge browse of '{target}' failed: {e}")
            return BrowseResult(target=target)

        files = [entry.get("url", "") for entry in data.get("files", [])]
        dirs = [entry.get("path", "").rstrip("/") for entry in data.get("dirs", [])]
        pattern = options.get("wildcard")
        return BrowseResult(
            target=unquote(data.get("folder", target)),
            files=_filter_listing(files, pattern, extensions),
            dirs=dirs
        )

    async def create_directory(self, source: str, path: str) -> None:
        if not path:
            return
        try:
            await self._call("assets/new-folder", json={"path": path})
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to create Forge folder '{path}': {e}") from e

    async def upload_file(self, source: str, path: str, filename: str, content: bytes) -> Optional[str]:
        try:
            data = await self._call(
                "assets/upload",
                files={"file": (filename, content)},
                data={"path": f"{path}/{filename}"}
            )
        except StorageUploadTooLargeError:
            raise
        except (StorageError, httpx.HTTPError) as e:
            raise StorageUploadRejectedError(f"Forge upload of {path}/{filename} failed: {e}") from e
        return data.get("url")

    async def read_binary(self, path: str) -> bytes:
        url = path if path.startswith(("http://", "https://")) else f"{self.game_url}/{path.lstrip('/')}"
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetUnavailableError(f"Cannot read '{path}': {e}") from e
        return response.content


async def verify_path(storage: StorageBackend, path: str, source: str = "data") -> bool:
    """
    Create every directory along ``path``, ignoring ones that already exist.

    Args:
        storage: Backend to create directories in
        path: Slash-separated directory path
        source: Storage source name

    Returns:
        True once every segment has been attempted
    """
    current = ""
    for segment in path.split("/"):
        if not segment:
            continue
        current = f"{current}/{segment}" if current else segment
        try:
            await storage.create_directory(source, current)
        except StorageError as e:
            logger.debug(f"Error trying to verify path {source}, {current}: {e}")
    return True


def select_storage_backend() -> StorageBackend:
    """
    Build the storage backend for the current environment.

    Returns:
        ForgeStorage when running against The Forge, otherwise RelayStorage

    Raises:
        ConfigurationError: If the selected backend's credentials are missing
    """
    target = get_storage_target()
    if target == "forge":
        api_key = get_forge_api_key()
        if not api_key:
            raise ConfigurationError("FORGE_API_KEY not set in environment")
        logger.info("Using Forge asset library storage")
        return ForgeStorage(api_key=api_key, game_url=get_foundry_url())

    try:
        relay_url, api_key, client_id = get_relay_url(), get_api_key(), get_client_id()
    except KeyError as e:
        raise ConfigurationError(f"Relay storage not configured: {e}") from e
    logger.info("Using relay-managed world storage")
    return RelayStorage(relay_url=relay_url, api_key=api_key, client_id=client_id)
