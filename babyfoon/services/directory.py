"""Process-wide directory of live channels keyed by 4-digit code."""

import logging
import random
import threading
import time
from typing import Callable, Dict, List, Optional

from ..errors import ChannelUnavailableError, InvalidChannelCodeError, StreamNotFoundError
from ..models.session import Role, SessionRecord, ValidationResult, is_valid_channel_code

logger = logging.getLogger(__name__)

CODE_SPACE = 10_000
DEFAULT_ALLOCATION_ATTEMPTS = 20


class ChannelDirectory:
    """Thread-safe registry of broadcaster and audience records.

    At most one active broadcaster record exists per code. Entries live only
    as long as the process holding the directory.
    """

    def __init__(self,
                 rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.time):
        self._rng = rng or random.SystemRandom()
        self._clock = clock
        self._lock = threading.Lock()
        self._broadcasters: Dict[str, SessionRecord] = {}
        self._listeners: Dict[str, List[SessionRecord]] = {}

    def allocate_code(self, max_attempts: int = DEFAULT_ALLOCATION_ATTEMPTS) -> str:
        """Pick a random 4-digit code that no active broadcaster holds.

        The code is not reserved; ``register_broadcaster`` claims it.

        Raises:
            ChannelUnavailableError: if no free code was found within ``max_attempts``
        """
        for _ in range(max_attempts):
            code = f"{self._rng.randrange(CODE_SPACE):04d}"
            if not self.is_active(code):
                return code
            logger.debug(f"Code {code} collides with an active channel, retrying")
        raise ChannelUnavailableError("No free channel code available, try again")

    def register_broadcaster(self, code: str) -> SessionRecord:
        """Create the active broadcaster record of a channel.

        Raises:
            InvalidChannelCodeError: if the code is not 4 digits
            ChannelUnavailableError: if the code already has an active broadcaster
        """
        if not is_valid_channel_code(code):
            raise InvalidChannelCodeError(f"Invalid code: {code!r}")
        with self._lock:
            existing = self._broadcasters.get(code)
            if existing is not None and existing.active:
                raise ChannelUnavailableError(f"Channel {code} already has an active broadcaster")
            record = SessionRecord(code=code, role=Role.BROADCASTER, created_at=self._clock())
            self._broadcasters[code] = record
            self._listeners[code] = []
        logger.info(f"Registered broadcaster for channel {code}")
        return record

    def attach_listener(self, code: str) -> SessionRecord:
        """Create an audience record for a live channel.

        Raises:
            InvalidChannelCodeError: if the code is not 4 digits
            StreamNotFoundError: if the channel has no active broadcaster
        """
        if not is_valid_channel_code(code):
            raise InvalidChannelCodeError(f"Invalid code: {code!r}")
        with self._lock:
            broadcaster = self._broadcasters.get(code)
            if broadcaster is None or not broadcaster.active:
                raise StreamNotFoundError(f"Stream {code} not found or stopped")
            record = SessionRecord(code=code, role=Role.AUDIENCE, created_at=self._clock())
            self._listeners.setdefault(code, []).append(record)
        logger.info(f"Listener attached to channel {code}")
        return record

    def detach_listener(self, record: SessionRecord) -> None:
        """Deactivate one audience record (idempotent)."""
        with self._lock:
            record.active = False
            listeners = self._listeners.get(record.code)
            if listeners and record in listeners:
                listeners.remove(record)
        logger.info(f"Listener detached from channel {record.code}")

    def deactivate(self, code: str) -> Optional[SessionRecord]:
        """Mark a channel's broadcaster and all its listeners inactive.

        Returns:
            The deactivated broadcaster record, or None if there was none
        """
        with self._lock:
            record = self._broadcasters.pop(code, None)
            listeners = self._listeners.pop(code, [])
            if record is not None:
                record.active = False
            for listener in listeners:
                listener.active = False
        if record is not None:
            logger.info(f"Deactivated channel {code} ({len(listeners)} listeners detached)")
        return record

    def validate(self, code) -> ValidationResult:
        """Check a code before attempting to join."""
        if not is_valid_channel_code(code):
            return ValidationResult.INVALID_FORMAT
        if not self.is_active(code):
            return ValidationResult.NOT_FOUND
        return ValidationResult.VALID

    def is_active(self, code: str) -> bool:
        with self._lock:
            record = self._broadcasters.get(code)
            return record is not None and record.active

    def get(self, code: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._broadcasters.get(code)

    def find_listener(self, code: str, record_id: str) -> Optional[SessionRecord]:
        with self._lock:
            for record in self._listeners.get(code, []):
                if record.record_id == record_id:
                    return record
        return None

    def listener_count(self, code: str) -> int:
        with self._lock:
            return len(self._listeners.get(code, []))

    def active_codes(self) -> List[str]:
        with self._lock:
            return sorted(code for code, record in self._broadcasters.items() if record.active)
