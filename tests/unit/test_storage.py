"""Unit tests for the object storage backends."""

import asyncio
import os
import time
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from babyfoon.config import BabyfoonConfig
from babyfoon.errors import ConfigurationError, StorageError
from babyfoon.storage import LocalObjectStorage, SupabaseStorage, create_storage


@pytest.mark.unit
class TestLocalObjectStorage:
    """Test cases for LocalObjectStorage."""

    def test_upload_and_download(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)

        url = asyncio.run(storage.upload("4821/1000.wav", b"RIFF", "audio/wav"))
        data = asyncio.run(storage.download("4821/1000.wav"))

        assert data == b"RIFF"
        assert url.startswith("file://")
        assert url.endswith("/audio-streams/4821/1000.wav")
        assert (Path(temp_data_dir) / "audio-streams" / "4821" / "1000.wav").exists()

    def test_list_newest_first(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)

        async def scenario():
            for name in ("1000.wav", "2000.wav", "3000.wav"):
                await storage.upload(f"4821/{name}", name.encode(), "audio/wav")
            await storage.upload("9999/5000.wav", b"other", "audio/wav")
            return await storage.list_objects("4821/"), await storage.list_objects("4821/", limit=1)

        objects, newest = asyncio.run(scenario())

        assert [obj.name for obj in objects] == ["3000.wav", "2000.wav", "1000.wav"]
        assert newest[0].key == "4821/3000.wav"
        assert newest[0].size == len(b"3000.wav")
        assert newest[0].public_url == storage.public_url("4821/3000.wav")

    def test_list_unknown_channel_is_empty(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)
        assert asyncio.run(storage.list_objects("0000/")) == []

    def test_upsert(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)

        async def scenario():
            await storage.upload("4821/1000.wav", b"first", "audio/wav")
            await storage.upload("4821/1000.wav", b"second", "audio/wav", upsert=True)
            with pytest.raises(StorageError):
                await storage.upload("4821/1000.wav", b"third", "audio/wav", upsert=False)
            return await storage.download("4821/1000.wav")

        assert asyncio.run(scenario()) == b"second"

    @pytest.mark.parametrize("key", ["", "/", "../escape.wav", "4821/../../escape.wav"])
    def test_rejects_unsafe_keys(self, temp_data_dir, key):
        storage = LocalObjectStorage(temp_data_dir)
        with pytest.raises(StorageError):
            asyncio.run(storage.upload(key, b"x", "audio/wav"))

    def test_download_missing(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)
        with pytest.raises(StorageError):
            asyncio.run(storage.download("4821/404.wav"))

    def test_cleanup_old_channels(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)

        async def scenario():
            await storage.upload("1111/1.wav", b"old", "audio/wav")
            await storage.upload("2222/1.wav", b"new", "audio/wav")

        asyncio.run(scenario())
        old_dir = storage.bucket_dir / "1111"
        two_days_ago = time.time() - 2 * 24 * 60 * 60
        os.utime(old_dir, (two_days_ago, two_days_ago))

        cleaned = storage.cleanup_old_channels(max_age_days=1)

        assert cleaned == 1
        assert not old_dir.exists()
        assert (storage.bucket_dir / "2222").exists()

    def test_storage_stats(self, temp_data_dir):
        storage = LocalObjectStorage(temp_data_dir)

        async def scenario():
            await storage.upload("1111/1.wav", b"abc", "audio/wav")
            await storage.upload("1111/2.wav", b"de", "audio/wav")
            await storage.upload("2222/1.wav", b"f", "audio/wav")

        asyncio.run(scenario())
        stats = storage.get_storage_stats()

        assert stats["total_size_bytes"] == 6
        assert stats["channel_count"] == 2
        assert stats["chunk_files"] == 3
        assert stats["bucket_directory"] == str(storage.bucket_dir)


def _fake_supabase(received: dict) -> web.Application:
    """Minimal stand-in for the Supabase Storage REST routes."""
    async def upload(request):
        received["upload"] = (request.match_info["key"], await request.read(), request.headers.copy())
        if request.match_info["key"].endswith("fail.wav"):
            return web.json_response({"error": "Duplicate"}, status=409)
        return web.json_response({"Key": request.match_info["key"]})

    async def list_objects(request):
        received["list"] = await request.json()
        return web.json_response([
            {"name": "2000.wav", "id": "b", "created_at": "2024-01-01T00:00:02Z", "metadata": {"size": 20}},
            {"name": "1000.wav", "id": "a", "created_at": "2024-01-01T00:00:01Z", "metadata": {"size": 10}},
            {"name": "nested", "id": None, "metadata": None},
        ])

    async def public(request):
        if request.match_info["key"] == "4821/2000.wav":
            return web.Response(body=b"chunk")
        return web.Response(status=404)

    app = web.Application()
    app.router.add_post("/storage/v1/object/list/{bucket}", list_objects)
    app.router.add_post("/storage/v1/object/{bucket}/{key:.+}", upload)
    app.router.add_get("/storage/v1/object/public/{bucket}/{key:.+}", public)
    return app


@pytest.mark.unit
class TestSupabaseStorage:
    """Test cases for the Supabase REST backend against a local stand-in."""

    def _run(self, scenario):
        received = {}

        async def wrapper():
            async with TestServer(_fake_supabase(received)) as server:
                storage = SupabaseStorage(str(server.make_url("/")), "service-key")
                try:
                    return await scenario(storage)
                finally:
                    await storage.close()

        return asyncio.run(wrapper()), received

    def test_upload(self):
        async def scenario(storage):
            return await storage.upload("4821/2000.wav", b"RIFF", "audio/wav")

        url, received = self._run(scenario)

        key, body, headers = received["upload"]
        assert key == "4821/2000.wav"
        assert body == b"RIFF"
        assert headers["Authorization"] == "Bearer service-key"
        assert headers["Content-Type"] == "audio/wav"
        assert headers["x-upsert"] == "true"
        assert url.endswith("/storage/v1/object/public/audio-streams/4821/2000.wav")

    def test_upload_failure(self):
        async def scenario(storage):
            with pytest.raises(StorageError, match="409"):
                await storage.upload("4821/fail.wav", b"RIFF", "audio/wav", upsert=False)

        _, received = self._run(scenario)
        assert received["upload"][2]["x-upsert"] == "false"

    def test_list_skips_folders(self):
        async def scenario(storage):
            return await storage.list_objects("4821/", limit=5)

        objects, received = self._run(scenario)

        assert received["list"]["prefix"] == "4821"
        assert received["list"]["limit"] == 5
        assert received["list"]["sortBy"] == {"column": "created_at", "order": "desc"}
        assert [obj.key for obj in objects] == ["4821/2000.wav", "4821/1000.wav"]
        assert objects[0].size == 20
        assert objects[0].created_at > objects[1].created_at

    def test_download(self):
        async def scenario(storage):
            data = await storage.download("4821/2000.wav")
            with pytest.raises(StorageError):
                await storage.download("4821/missing.wav")
            return data

        data, _ = self._run(scenario)
        assert data == b"chunk"

    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            SupabaseStorage("", "key")
        with pytest.raises(ConfigurationError):
            SupabaseStorage("https://example.supabase.co", "")


@pytest.mark.unit
class TestCreateStorage:

    def test_local_backend(self, temp_data_dir):
        config = BabyfoonConfig()
        config.set('storage.data_directory', temp_data_dir)
        config.set('storage.bucket', 'chunks')

        storage = create_storage(config)

        assert isinstance(storage, LocalObjectStorage)
        assert storage.bucket_dir == Path(temp_data_dir).absolute() / "chunks"

    def test_supabase_backend(self):
        config = BabyfoonConfig()
        config.set('storage.backend', 'supabase')
        config.set('storage.supabase_url', 'https://example.supabase.co/')
        config.set('storage.supabase_key', 'key')

        storage = create_storage(config)

        assert isinstance(storage, SupabaseStorage)
        assert storage.public_url("4821/1.wav") == (
            "https://example.supabase.co/storage/v1/object/public/audio-streams/4821/1.wav"
        )

    def test_supabase_without_credentials(self):
        config = BabyfoonConfig()
        config.set('storage.backend', 'supabase')
        with pytest.raises(ConfigurationError):
            create_storage(config)

    def test_unknown_backend(self):
        config = BabyfoonConfig()
        config.set('storage.backend', 'floppy')
        with pytest.raises(ConfigurationError):
            create_storage(config)
