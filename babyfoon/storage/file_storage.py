"""Filesystem-backed object storage for audio chunks."""

import asyncio
import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from ..errors import StorageError
from ..models.audio import StoredObject
from .base import ObjectStorage

logger = logging.getLogger(__name__)


class LocalObjectStorage(ObjectStorage):
    """Stores chunks as files under ``{data_dir}/{bucket}/{key}``.

    Any process that can read the directory (a shared or synced folder)
    can act as a listener.
    """

    def __init__(self, data_dir: str = "./data", bucket: str = "audio-streams"):
        """Initialize local storage with data directory.

        Args:
            data_dir: Base directory for storing all data
            bucket: Name of the bucket directory below ``data_dir``
        """
        self.data_dir = Path(data_dir)
        self.bucket_dir = self.data_dir / bucket
        self.bucket_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"LocalObjectStorage initialized with bucket dir: {self.bucket_dir}")

    def _path_for(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise StorageError(f"Invalid object key: {key!r}")
        return self.bucket_dir.joinpath(*parts)

    async def upload(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, data, upsert)
        except StorageError:
            raise
        except OSError as e:
            logger.error(f"Error saving object {key}: {e}")
            raise StorageError(f"Upload failed for {key}: {e}")
        logger.debug(f"Object saved: {path} ({len(data)} bytes, {content_type})")
        return self.public_url(key)

    @staticmethod
    def _write(path: Path, data: bytes, upsert: bool) -> None:
        if path.exists() and not upsert:
            raise StorageError(f"Object already exists: {path.name}")
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)

    async def list_objects(self, prefix: str, limit: int = 100) -> List[StoredObject]:
        try:
            return await asyncio.to_thread(self._list, prefix, limit)
        except OSError as e:
            logger.error(f"Error listing objects under {prefix}: {e}")
            raise StorageError(f"List failed for {prefix}: {e}")

    def _list(self, prefix: str, limit: int) -> List[StoredObject]:
        directory = self._path_for(prefix)
        if not directory.is_dir():
            return []
        entries = []
        for path in directory.iterdir():
            if path.is_file() and not path.name.startswith("."):
                stat = path.stat()
                entries.append((stat.st_mtime_ns, path.name, stat.st_size))
        # Newest first; names are capture timestamps so they break mtime ties
        entries.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
        base = prefix.strip("/")
        objects = []
        for mtime_ns, name, size in entries[:limit]:
            key = f"{base}/{name}"
            objects.append(StoredObject(
                key=key,
                size=size,
                created_at=mtime_ns / 1e9,
                public_url=self.public_url(key),
            ))
        return objects

    def public_url(self, key: str) -> str:
        return self._path_for(key).absolute().as_uri()

    async def download(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.error(f"Error reading object {key}: {e}")
            raise StorageError(f"Download failed for {key}: {e}")

    def cleanup_old_channels(self, max_age_days: int = 1) -> int:
        """Remove channel directories not written to for ``max_age_days``.

        Returns:
            Number of channel directories removed
        """
        cutoff_time = datetime.now().timestamp() - (max_age_days * 24 * 60 * 60)
        cleaned_count = 0

        for channel_path in self.bucket_dir.iterdir():
            if channel_path.is_dir() and channel_path.stat().st_mtime < cutoff_time:
                shutil.rmtree(channel_path)
                cleaned_count += 1
                logger.info(f"Cleaned up old channel: {channel_path.name}")

        logger.info(f"Cleaned up {cleaned_count} old channels")
        return cleaned_count

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage usage statistics.

        Returns:
            Dictionary with storage statistics
        """
        total_size = 0
        channel_count = 0
        chunk_files = 0

        for channel_path in self.bucket_dir.iterdir():
            if channel_path.is_dir():
                channel_count += 1
                for file_path in channel_path.iterdir():
                    if file_path.is_file():
                        total_size += file_path.stat().st_size
                        chunk_files += 1

        return {
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "channel_count": channel_count,
            "chunk_files": chunk_files,
            "bucket_directory": str(self.bucket_dir)
        }
