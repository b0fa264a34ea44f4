"""Tests for FoundryVTT storage backends."""

import json

import httpx
import pytest
import requests
from unittest.mock import AsyncMock, MagicMock, Mock, patch

from exceptions import (
    AssetUnavailableError,
    ConfigurationError,
    StorageError,
    StorageUploadRejectedError,
    StorageUploadTooLargeError,
)
from foundry.storage import ForgeStorage, RelayStorage, select_storage_backend, verify_path


@pytest.fixture
def relay():
    return RelayStorage(relay_url="https://relay.example.com", api_key="test-key", client_id="test-client")


def _response(status_code=200, payload=None, content=b"", text=""):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.content = content
    response.text = text
    response.raise_for_status = Mock()
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


@pytest.mark.unit
class TestRelayStorage:
    """Tests for RelayStorage."""

    @pytest.mark.asyncio
    async def test_browse_wildcard_filters_listing(self, relay):
        listing = {"results": [
            {"path": "tokens/goblin-1.png", "type": "file"},
            {"path": "tokens/goblin-2.jpg", "type": "file"},
            {"path": "tokens/orc.png", "type": "file"},
            {"path": "tokens/variants", "type": "directory"},
        ]}
        with patch("foundry.storage.requests.get", return_value=_response(payload=listing)) as mock_get:
            result = await relay.browse("data", "tokens/goblin-*.png", extensions=[".png"], wildcard=True)

        assert result.files == ["tokens/goblin-1.png"]
        assert result.dirs == ["tokens/variants"]
        assert mock_get.call_args.kwargs["params"]["path"] == "tokens"

    @pytest.mark.asyncio
    async def test_browse_failure_raises(self, relay):
        with patch("foundry.storage.requests.get", return_value=_response(status_code=500)):
            with pytest.raises(StorageError):
                await relay.browse("data", "tokens")

    @pytest.mark.asyncio
    async def test_upload_returns_stored_path(self, relay):
        with patch("foundry.storage.requests.post", return_value=_response(payload={"path": "a/b.png"})) as mock_post:
            stored = await relay.upload_file("data", "a", "b.png", b"img")

        assert stored == "a/b.png"
        params = mock_post.call_args.kwargs["params"]
        assert (params["path"], params["filename"], params["mimeType"]) == ("a", "b.png", "image/png")
        assert mock_post.call_args.kwargs["data"] == b"img"

    @pytest.mark.asyncio
    async def test_upload_413_is_too_large(self, relay):
        with patch("foundry.storage.requests.post", return_value=_response(status_code=413)):
            with pytest.raises(StorageUploadTooLargeError):
                await relay.upload_file("data", "a", "huge.webp", b"x")

    @pytest.mark.asyncio
    async def test_upload_other_failure_is_rejected(self, relay):
        with patch("foundry.storage.requests.post", return_value=_response(status_code=500, text="boom")):
            with pytest.raises(StorageUploadRejectedError, match="boom"):
                await relay.upload_file("data", "a", "b.png", b"x")

    @pytest.mark.asyncio
    async def test_create_directory_failure(self, relay):
        with patch("foundry.storage.requests.post", return_value=_response(status_code=400, text="exists")):
            with pytest.raises(StorageError, match="exists"):
                await relay.create_directory("data", "worlds")

    @pytest.mark.asyncio
    async def test_read_binary(self, relay):
        with patch("foundry.storage.requests.get", return_value=_response(content=b"bytes")) as mock_get:
            content = await relay.read_binary("tokens/goblin%20king.png")

        assert content == b"bytes"
        assert mock_get.call_args.kwargs["params"]["path"] == "tokens/goblin king.png"

    @pytest.mark.asyncio
    async def test_read_binary_unavailable(self, relay):
        with patch("foundry.storage.requests.get", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(AssetUnavailableError):
                await relay.read_binary("tokens/goblin.png")


def _forge(handler):
    return ForgeStorage(
        api_key="forge-key",
        game_url="https://game.forge-vtt.com/",
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
class TestForgeStorage:
    """Tests for ForgeStorage."""

    @pytest.mark.asyncio
    async def test_browse_relative_wildcard(self):
        requests_seen = []

        def handler(request):
            requests_seen.append(json.loads(request.content))
            return httpx.Response(200, json={
                "folder": "tokens",
                "files": [
                    {"url": "https://assets.forge-vtt.com/u1/tokens/goblin-1.png"},
                    {"url": "https://assets.forge-vtt.com/u1/tokens/orc.png"},
                ],
                "dirs": [{"path": "tokens/variants/"}],
            })

        storage = _forge(handler)
        result = await storage.browse(
            "forgevtt", "tokens/goblin-*.png", extensions=[".png"], wildcard=True
        )

        assert result.files == ["https://assets.forge-vtt.com/u1/tokens/goblin-1.png"]
        assert result.dirs == ["tokens/variants"]
        assert requests_seen[0]["path"] == "tokens"
        assert requests_seen[0]["options"]["wildcard"] == "tokens/goblin-*.png"

    @pytest.mark.asyncio
    async def test_browse_error_returns_empty_listing(self):
        storage = _forge(lambda request: httpx.Response(200, json={"error": "Not allowed"}))

        result = await storage.browse("forgevtt", "tokens")

        assert result.files == []

    @pytest.mark.asyncio
    async def test_upload_returns_url(self):
        def handler(request):
            assert request.url.path == "/api/assets/upload"
            assert request.headers["Authorization"] == "Bearer forge-key"
            return httpx.Response(200, json={"url": "https://assets.forge-vtt.com/u1/a/b.png"})

        stored = await _forge(handler).upload_file("forgevtt", "a", "b.png", b"img")

        assert stored == "https://assets.forge-vtt.com/u1/a/b.png"

    @pytest.mark.asyncio
    async def test_upload_too_large(self):
        storage = _forge(lambda request: httpx.Response(413))

        with pytest.raises(StorageUploadTooLargeError):
            await storage.upload_file("forgevtt", "a", "huge.webp", b"x")

    @pytest.mark.asyncio
    async def test_upload_error_rejected(self):
        storage = _forge(lambda request: httpx.Response(200, json={"error": "Quota exceeded"}))

        with pytest.raises(StorageUploadRejectedError, match="Quota exceeded"):
            await storage.upload_file("forgevtt", "a", "b.png", b"x")

    @pytest.mark.asyncio
    async def test_read_binary_from_game_url(self):
        def handler(request):
            assert str(request.url) == "https://game.forge-vtt.com/tokens/goblin.png"
            return httpx.Response(200, content=b"goblin")

        assert await _forge(handler).read_binary("tokens/goblin.png") == b"goblin"

    @pytest.mark.asyncio
    async def test_read_binary_missing(self):
        storage = _forge(lambda request: httpx.Response(404))

        with pytest.raises(AssetUnavailableError):
            await storage.read_binary("tokens/missing.png")


@pytest.mark.unit
class TestVerifyPath:
    """Tests for verify_path()."""

    @pytest.mark.asyncio
    async def test_creates_each_segment_ignoring_errors(self):
        storage = MagicMock()
        storage.create_directory = AsyncMock(side_effect=[StorageError("exists"), None, None])

        assert await verify_path(storage, "worlds/w1/adventures") is True

        created = [call.args for call in storage.create_directory.call_args_list]
        assert created == [("data", "worlds"), ("data", "worlds/w1"), ("data", "worlds/w1/adventures")]


@pytest.mark.unit
class TestSelectStorageBackend:
    """Tests for select_storage_backend()."""

    def test_relay_by_default(self, monkeypatch):
        monkeypatch.delenv("FOUNDRY_TARGET", raising=False)
        monkeypatch.delenv("FORGE_API_KEY", raising=False)
        monkeypatch.setenv("FOUNDRY_RELAY_URL", "https://relay.example.com")
        monkeypatch.setenv("FOUNDRY_API_KEY", "k")
        monkeypatch.setenv("FOUNDRY_CLIENT_ID", "c")

        assert isinstance(select_storage_backend(), RelayStorage)

    def test_forge_when_key_present(self, monkeypatch):
        monkeypatch.delenv("FOUNDRY_TARGET", raising=False)
        monkeypatch.setenv("FORGE_API_KEY", "forge-key")

        assert isinstance(select_storage_backend(), ForgeStorage)

    def test_forge_target_without_key(self, monkeypatch):
        monkeypatch.setenv("FOUNDRY_TARGET", "forge")
        monkeypatch.delenv("FORGE_API_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="FORGE_API_KEY"):
            select_storage_backend()

    def test_relay_without_credentials(self, monkeypatch):
        monkeypatch.setenv("FOUNDRY_TARGET", "local")
        monkeypatch.delenv("FOUNDRY_RELAY_URL", raising=False)

        with pytest.raises(ConfigurationError):
            select_storage_backend()
