"""FoundryVTT relay API client for world documents, folders and compendiums."""

import asyncio
import logging
import os
import requests
from typing import Any, Dict, List, Optional

from adventure.descriptors import get_descriptor
from adventure.models import DocumentKind
from exceptions import FoundryError

logger = logging.getLogger(__name__)


class WorldClient:
    """Client for reading and writing a FoundryVTT world via the relay API.

    Every public coroutine runs its blocking request in a worker thread, so
    callers can await them from the export and import pipelines.
    """

    def __init__(
        self,
        relay_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client_id: Optional[str] = None,
        timeout: float = 30
    ):
        """
        Initialize the client, defaulting credentials to the environment.

        Raises:
            ValueError: If required settings are missing
        """
        self.relay_url = relay_url or os.getenv("FOUNDRY_RELAY_URL")
        self.api_key = api_key or os.getenv("FOUNDRY_API_KEY")
        self.client_id = client_id or os.getenv("FOUNDRY_CLIENT_ID")
        self.timeout = timeout

        if not self.relay_url:
            raise ValueError("FOUNDRY_RELAY_URL not set in environment")
        if not self.api_key:
            raise ValueError("FOUNDRY_API_KEY not set in environment")
        if not self.client_id:
            raise ValueError("FOUNDRY_CLIENT_ID not set in environment")

        logger.info(f"Initialized WorldClient via {self.relay_url}")

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send one relay request and unwrap the "data" envelope.

        Raises:
            FoundryError: On transport errors or non-200 responses
        """
        url = f"{self.relay_url}/{endpoint}"
        headers = {"x-api-key": self.api_key, "Content-Type": "application/json"}
        query = {"clientId": self.client_id, **(params or {})}

        try:
            response = requests.request(
                method, url, headers=headers, params=query, json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Relay request {method} /{endpoint} failed: {e}")
            raise FoundryError(f"Relay request {method} /{endpoint} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Relay request {method} /{endpoint} failed: {response.status_code} - {response.text}")
            raise FoundryError(
                f"Relay request {method} /{endpoint} failed: {response.status_code} - {response.text}"
            )

        result = response.json()
        if isinstance(result, dict) and result.get("error"):
            raise FoundryError(f"Relay request {method} /{endpoint} failed: {result['error']}")
        if isinstance(result, dict) and "data" in result:
            return result["data"]
        return result

    @staticmethod
    def _uuid(kind: DocumentKind, document_id: str) -> str:
        return f"{get_descriptor(kind).document_name}.{document_id}"

    @staticmethod
    def _created_entity(result: Any) -> Dict[str, Any]:
        """Extract the created document (with its new id) from a create response."""
        entity = result.get("entity", result) if isinstance(result, dict) else {}
        if isinstance(entity, list):
            entity = entity[0] if entity else {}
        if not (entity.get("_id") or entity.get("id")):
            raise FoundryError(f"No document id in create response: {result}")
        return entity

    # World

    async def get_world_info(self) -> Dict[str, Any]:
        """
        Get the active world's id, system and modules.

        Returns:
            Dict with id, system, systemVersion, coreVersion and modules
            (each module a dict with title and active)
        """
        return await asyncio.to_thread(self._request, "GET", "world")

    def is_world_active(self) -> bool:
        """
        Check if a world is currently running and reachable through the relay.

        Returns:
            True if a world is active and responding, False otherwise
        """
        try:
            response = requests.get(
                f"{self.relay_url}/search",
                headers={"x-api-key": self.api_key},
                params={"clientId": self.client_id, "query": "", "filter": "Folder"},
                timeout=5
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException:
            return False

    # Documents

    async def get_document(self, kind: DocumentKind, document_id: str) -> Optional[Dict[str, Any]]:
        """Get a world document as plain data, or None if it does not exist."""
        try:
            return await asyncio.to_thread(
                self._request, "GET", "get", {"uuid": self._uuid(kind, document_id)}
            )
        except FoundryError as e:
            logger.warning(f"Could not retrieve {kind.value} {document_id}: {e}")
            return None

    async def list_documents(self, kind: DocumentKind) -> List[Dict[str, Any]]:
        """List every world document of one kind."""
        document_name = get_descriptor(kind).document_name
        result = await asyncio.to_thread(self._request, "GET", "documents", {"type": document_name})
        return result if isinstance(result, list) else result.get("documents", [])

    async def find_document_by_import_id(
        self, kind: DocumentKind, import_id: str
    ) -> Optional[Dict[str, Any]]:
        """Find a world document previously imported from ``import_id``."""
        for document in await self.list_documents(kind):
            if (document.get("flags") or {}).get("importid") == import_id:
                return document
        return None

    async def create_document(self, kind: DocumentKind, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a world document and return it with its new id."""
        payload = {"entityType": get_descriptor(kind).document_name, "data": data}
        result = await asyncio.to_thread(self._request, "POST", "create", None, payload)
        entity = self._created_entity(result)
        logger.debug(f"Created {kind.value}: {data.get('name')} ({entity.get('_id') or entity.get('id')})")
        return entity

    async def update_document(
        self, kind: DocumentKind, document_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Apply dotted-key updates to a world document."""
        return await asyncio.to_thread(
            self._request, "PUT", "update", {"uuid": self._uuid(kind, document_id)}, {"data": updates}
        )

    # Folders

    async def list_folders(self) -> List[Dict[str, Any]]:
        """List every world folder."""
        result = await asyncio.to_thread(self._request, "GET", "folders")
        return result if isinstance(result, list) else result.get("folders", [])

    async def create_folder(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a folder and return it with its new id."""
        payload = {"entityType": "Folder", "data": data}
        result = await asyncio.to_thread(self._request, "POST", "create", None, payload)
        entity = self._created_entity(result)
        logger.debug(f"Created folder: {data.get('name')} ({entity.get('_id') or entity.get('id')})")
        return entity

    # Compendiums

    async def get_compendium(self, pack_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a compendium pack with its entries.

        Returns:
            Dict with "metadata" and "entries", or None if not found
        """
        try:
            return await asyncio.to_thread(self._request, "GET", "compendium", {"pack": pack_id})
        except FoundryError as e:
            logger.warning(f"Could not retrieve compendium {pack_id}: {e}")
            return None

    async def list_compendiums(self) -> List[Dict[str, Any]]:
        """List compendium pack metadata."""
        result = await asyncio.to_thread(self._request, "GET", "compendiums")
        return result if isinstance(result, list) else result.get("compendiums", [])

    async def get_or_create_compendium(self, document_type: str, label: str) -> Dict[str, Any]:
        """
        Find a world compendium by label, creating it if missing.

        Returns:
            Pack metadata including its "collection" id
        """
        for pack in await self.list_compendiums():
            if pack.get("label") == label:
                return pack
        pack = await asyncio.to_thread(
            self._request, "POST", "create-compendium", None, {"label": label, "type": document_type}
        )
        logger.info(f"Created compendium: {label} ({pack.get('collection')})")
        return pack

    async def create_compendium_entry(
        self, pack_id: str, document_type: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Create a document inside a compendium pack."""
        payload = {"entityType": document_type, "pack": pack_id, "data": data}
        result = await asyncio.to_thread(self._request, "POST", "create", None, payload)
        return self._created_entity(result)
