"""Audio-related data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class RecordedSegment:
    """A finished recording segment, fully read into memory."""
    data: bytes
    started_at: float  # Unix seconds when capture of this segment began
    ended_at: float
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at - self.started_at)


@dataclass(frozen=True)
class AudioChunk:
    """An uploaded (immutable) segment of a channel's fallback stream."""
    channel_code: str
    sequence_number: int  # Capture timestamp in unix milliseconds
    data: bytes
    mime_type: str = "audio/wav"
    extension: str = "wav"

    @property
    def key(self) -> str:
        return chunk_key(self.channel_code, self.sequence_number, self.extension)


@dataclass(frozen=True)
class StoredObject:
    """An object listed from shared storage."""
    key: str
    size: int
    created_at: float
    public_url: Optional[str] = None

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


def chunk_key(channel_code: str, sequence_number: int, extension: str) -> str:
    """Storage key of a chunk: ``{channelCode}/{captureMillis}.{ext}``."""
    return f"{channel_code}/{sequence_number}.{extension.lstrip('.')}"


def channel_prefix(channel_code: str) -> str:
    """Storage prefix under which a channel's chunks live."""
    return f"{channel_code}/"
