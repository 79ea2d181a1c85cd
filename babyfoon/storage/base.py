"""Abstract shared object storage used by the chunked pipeline."""

from abc import ABC, abstractmethod
from typing import List

from ..models.audio import StoredObject


class ObjectStorage(ABC):
    """Bucket of immutable audio chunks addressed by ``{channelCode}/{name}`` keys.

    Implementations raise StorageError for upload, list and download failures.
    """

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        """Write ``data`` under ``key`` and return its public URL."""

    @abstractmethod
    async def list_objects(self, prefix: str, limit: int = 100) -> List[StoredObject]:
        """List objects under ``prefix``, newest first."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public URL of an object."""

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Read an object fully into memory."""

    async def close(self) -> None:
        """Release network resources held by the backend."""
