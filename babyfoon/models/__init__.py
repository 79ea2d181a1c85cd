"""Data models for the babyfoon application."""

from .session import (
    Role,
    SessionState,
    SessionRecord,
    ValidationResult,
    is_valid_channel_code,
    parse_watch_link,
    build_watch_link,
)
from .token import JoinCredential, TokenRequest, TokenResponse
from .audio import RecordedSegment, AudioChunk, StoredObject, chunk_key, channel_prefix
from .events import SessionStateEvent, AudioLevelEvent, LoudNoiseEvent, PeerEvent

__all__ = [
    "Role",
    "SessionState",
    "SessionRecord",
    "ValidationResult",
    "is_valid_channel_code",
    "parse_watch_link",
    "build_watch_link",
    "JoinCredential",
    "TokenRequest",
    "TokenResponse",
    "RecordedSegment",
    "AudioChunk",
    "StoredObject",
    "chunk_key",
    "channel_prefix",
    # Event models
    "SessionStateEvent",
    "AudioLevelEvent",
    "LoudNoiseEvent",
    "PeerEvent",
]
