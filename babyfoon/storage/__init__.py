"""Shared object storage for the chunked fallback stream."""

from ..errors import ConfigurationError
from .base import ObjectStorage
from .file_storage import LocalObjectStorage
from .supabase import SupabaseStorage

__all__ = [
    "ObjectStorage",
    "LocalObjectStorage",
    "SupabaseStorage",
    "create_storage",
]


def create_storage(config) -> ObjectStorage:
    """Build the storage backend named by ``storage.backend``."""
    backend = str(config.get('storage.backend', 'local')).lower()
    bucket = config.get('storage.bucket', 'audio-streams')
    if backend == 'local':
        return LocalObjectStorage(config.get_data_directory(), bucket)
    if backend == 'supabase':
        return SupabaseStorage(
            base_url=config.get('storage.supabase_url', ''),
            api_key=config.get('storage.supabase_key', ''),
            bucket=bucket,
        )
    raise ConfigurationError(f"Unknown storage backend: {backend}")
