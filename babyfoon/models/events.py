"""Event models published on the session's output topics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .session import Role, SessionState


@dataclass
class SessionStateEvent:
    """Session lifecycle transition."""
    channel_code: Optional[str]
    role: Optional[Role]
    previous: SessionState
    current: SessionState
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class AudioLevelEvent:
    """Normalized audio level recomputed on a metering callback."""
    channel_code: Optional[str]
    level: float  # 0..1
    raw_dbfs: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class LoudNoiseEvent:
    """Debounced loud-noise alert (user-facing; not a state transition)."""
    channel_code: Optional[str]
    level: float
    threshold: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PeerEvent:
    """A remote participant joined or left the channel."""
    channel_code: Optional[str]
    uid: int
    joined: bool
    timestamp: datetime = field(default_factory=datetime.now)
