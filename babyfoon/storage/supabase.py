"""Supabase Storage backend over its REST API."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

import aiohttp

from ..errors import ConfigurationError, StorageError
from ..models.audio import StoredObject
from .base import ObjectStorage

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class SupabaseStorage(ObjectStorage):
    """Chunks stored in a public Supabase Storage bucket."""

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 bucket: str = "audio-streams",
                 timeout_seconds: float = 15.0):
        """Initialize Supabase storage client.

        Args:
            base_url: Project URL, e.g. ``https://xyz.supabase.co``
            api_key: Service or anon key allowed to write the bucket
            bucket: Public bucket holding the chunks
            timeout_seconds: Total timeout per request
        """
        if not base_url or not api_key:
            raise ConfigurationError("Supabase storage requires storage.supabase_url and storage.supabase_key")
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"SupabaseStorage initialized for bucket {bucket} at {self.base_url}")

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def upload(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"
        headers = dict(self.headers)
        headers["Content-Type"] = content_type
        headers["x-upsert"] = "true" if upsert else "false"
        try:
            async with self._get_session().post(url, data=data, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise StorageError(f"Upload failed for {key}: {response.status} - {error_text}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(f"Upload failed for {key}: {e}")
        return self.public_url(key)

    async def list_objects(self, prefix: str, limit: int = 100) -> List[StoredObject]:
        url = f"{self.base_url}/storage/v1/object/list/{self.bucket}"
        folder = prefix.strip("/")
        body = {
            "prefix": folder,
            "limit": limit,
            "offset": 0,
            "sortBy": {"column": "created_at", "order": "desc"},
        }
        try:
            async with self._get_session().post(url, json=body, headers=self.headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise StorageError(f"List failed for {prefix}: {response.status} - {error_text}")
                entries = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise StorageError(f"List failed for {prefix}: {e}")

        objects = []
        for entry in entries or []:
            name = entry.get("name")
            # Folder placeholders have no id/metadata
            if not name or entry.get("id") is None:
                continue
            key = f"{folder}/{name}" if folder else name
            metadata = entry.get("metadata") or {}
            objects.append(StoredObject(
                key=key,
                size=int(metadata.get("size") or 0),
                created_at=_parse_timestamp(entry.get("created_at")),
                public_url=self.public_url(key),
            ))
        return objects

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"

    async def download(self, key: str) -> bytes:
        try:
            async with self._get_session().get(self.public_url(key)) as response:
                if response.status != 200:
                    raise StorageError(f"Download failed for {key}: {response.status}")
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(f"Download failed for {key}: {e}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
