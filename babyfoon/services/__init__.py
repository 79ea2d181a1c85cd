"""Session services: channel directory, event publishing and the session state machine."""

from .directory import ChannelDirectory
from .directory_client import (
    DirectoryClient,
    LocalDirectoryClient,
    HttpDirectoryClient,
    as_directory_client,
)
from .publisher import (
    SessionEventPublisher,
    SESSION_STATE_TOPIC,
    AUDIO_LEVEL_TOPIC,
    LOUD_NOISE_TOPIC,
    PEER_PRESENCE_TOPIC,
)
from .session_machine import AudioSession

__all__ = [
    "ChannelDirectory",
    "DirectoryClient",
    "LocalDirectoryClient",
    "HttpDirectoryClient",
    "as_directory_client",
    "SessionEventPublisher",
    "SESSION_STATE_TOPIC",
    "AUDIO_LEVEL_TOPIC",
    "LOUD_NOISE_TOPIC",
    "PEER_PRESENCE_TOPIC",
    "AudioSession",
]
