"""Abstract real-time audio engine capability the session machine depends on."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..models.session import Role


def _noop(*_args) -> None:
    return None


@dataclass
class EngineEventHandler:
    """Callbacks an engine invokes on the event loop thread."""
    on_joined: Callable[[str, int], None] = _noop             # channel, uid
    on_peer_joined: Callable[[int], None] = _noop              # remote uid
    on_peer_left: Callable[[int], None] = _noop                # remote uid
    on_volume_indication: Callable[[float], None] = _noop      # level in dBFS
    on_connection_lost: Callable[[Exception], None] = _noop


class RtcEngine(ABC):
    """Transport that joins a channel as broadcaster or audience.

    One engine instance belongs to one session attempt; ``release`` ends its life.
    """

    def __init__(self) -> None:
        self.handler = EngineEventHandler()
        self.app_id: Optional[str] = None
        self.role: Optional[Role] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    def register_event_handler(self, handler: EngineEventHandler) -> None:
        self.handler = handler

    def initialize(self, app_id: str) -> None:
        """Bind the engine to an application id."""
        self.app_id = app_id

    @abstractmethod
    def enable_audio(self) -> None:
        """Enable the audio module."""

    def set_role(self, role: Role) -> None:
        self.role = role

    @abstractmethod
    async def join(self, token: str, channel_name: str, uid: int) -> None:
        """Join a channel; raises TransportError on failure."""

    @abstractmethod
    async def leave(self) -> None:
        """Leave the current channel; raises TransportError on failure."""

    @abstractmethod
    def mute_local(self, muted: bool) -> None:
        """Suppress (or resume) outbound audio."""

    @abstractmethod
    def mute_remote(self, muted: bool) -> None:
        """Suppress (or resume) inbound audio."""

    def release(self) -> None:
        """Free engine resources."""
        self.handler = EngineEventHandler()
