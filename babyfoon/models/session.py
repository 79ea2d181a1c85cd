"""Session-related data models."""

import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlparse

from ..errors import InvalidChannelCodeError

CHANNEL_CODE_PATTERN = re.compile(r"[0-9]{4}")
WATCH_LINK_SCHEME = "babyfoon"


class Role(Enum):
    """Participation role; values are the wire integers of the token endpoint."""
    BROADCASTER = 1
    AUDIENCE = 2

    @classmethod
    def from_wire(cls, value) -> "Role":
        """Parse the wire integer (1=broadcaster, 2=audience)."""
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Unknown role: {value!r}")


class SessionState(Enum):
    """States of a monitor/listener's participation in a channel."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    JOINED = "joined"
    MUTED = "muted"
    UNMUTED = "unmuted"
    LEFT = "left"
    ERROR = "error"

    @property
    def is_joined(self) -> bool:
        return self in (SessionState.JOINED, SessionState.MUTED, SessionState.UNMUTED)


class ValidationResult(Enum):
    """Outcome of validating a channel code against the directory."""
    VALID = "valid"
    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"


@dataclass
class SessionRecord:
    """Directory entry for one participant of a channel."""
    code: str
    role: Role
    created_at: float = field(default_factory=time.time)
    active: bool = True
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def is_valid_channel_code(code) -> bool:
    """Return True if ``code`` is exactly four decimal digits."""
    return isinstance(code, str) and CHANNEL_CODE_PATTERN.fullmatch(code) is not None


def parse_watch_link(link: str) -> str:
    """Extract the channel code from a watch link or a bare code.

    Accepts ``babyfoon://watch/4821`` and ``4821`` (surrounding whitespace ignored).

    Raises:
        InvalidChannelCodeError: if no four-digit code can be extracted
    """
    if not isinstance(link, str):
        raise InvalidChannelCodeError("Invalid link")
    candidate = link.strip()
    if "://" in candidate:
        parsed = urlparse(candidate)
        if parsed.scheme != WATCH_LINK_SCHEME or parsed.netloc != "watch":
            raise InvalidChannelCodeError(f"Invalid link: {link}")
        candidate = parsed.path.strip("/")
    if not is_valid_channel_code(candidate):
        raise InvalidChannelCodeError(f"Invalid link: {link}")
    return candidate


def build_watch_link(code: str) -> str:
    """Build the shareable watch link for a channel code."""
    if not is_valid_channel_code(code):
        raise InvalidChannelCodeError(f"Invalid code: {code}")
    return f"{WATCH_LINK_SCHEME}://watch/{code}"
