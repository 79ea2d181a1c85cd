"""Chunked fallback streaming over shared object storage."""

from .chunked import ChunkedFallbackPipeline, PipelineStats, DEFAULT_INTERVAL_SECONDS
from .poller import LatestChunkPoller

__all__ = [
    "ChunkedFallbackPipeline",
    "PipelineStats",
    "DEFAULT_INTERVAL_SECONDS",
    "LatestChunkPoller",
]
