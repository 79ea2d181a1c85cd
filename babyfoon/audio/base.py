"""Abstract capture and playback devices used by the chunked pipeline."""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..models.audio import RecordedSegment

MeteringCallback = Callable[[float], None]


class SegmentRecorder(ABC):
    """Microphone that records bounded segments back to back.

    ``acquire`` takes exclusive ownership of the capture device and
    ``release`` gives it back; segments can only be recorded in between.
    """

    def __init__(self) -> None:
        self.metering_callback: Optional[MeteringCallback] = None

    def set_metering_callback(self, callback: Optional[MeteringCallback]) -> None:
        """Register a callback receiving dBFS metering samples while recording."""
        self.metering_callback = callback

    @abstractmethod
    def acquire(self) -> None:
        """Open the capture device."""

    @abstractmethod
    def start_segment(self) -> None:
        """Begin recording a new segment."""

    @abstractmethod
    def stop_segment(self) -> Optional[RecordedSegment]:
        """Finish the current segment and return it (None if nothing was recording)."""

    @abstractmethod
    def release(self) -> None:
        """Close the capture device; safe to call more than once."""

    @property
    @abstractmethod
    def is_recording(self) -> bool:
        """True while a segment is being recorded."""


class AudioPlayer(ABC):
    """Plays downloaded chunks; a new chunk replaces the one playing."""

    @abstractmethod
    async def play(self, data: bytes) -> None:
        """Start playing an encoded chunk."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and release the output device."""
