"""PyAudio segment recorder with per-buffer metering."""

import io
import logging
import threading
import time
import wave
from typing import List, Optional

import pyaudio

from ..models.audio import RecordedSegment
from .base import SegmentRecorder
from .level import pcm16_to_dbfs

logger = logging.getLogger(__name__)


class PyAudioSegmentRecorder(SegmentRecorder):
    """Continuous microphone capture cut into WAV segments.

    The input stream runs in PyAudio callback mode for as long as the device
    is acquired; starting and stopping a segment only swaps the frame buffer,
    so consecutive segments have no capture gap.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frames_per_buffer: int = 1600,
        channels: int = 1,
        format: int = pyaudio.paInt16,
    ):
        """Initialize recorder with specified parameters.

        Args:
            sample_rate: Audio sample rate
            frames_per_buffer: Samples per callback; sets the metering cadence
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
        """
        super().__init__()
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.channels = channels
        self.format = format

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

        self._lock = threading.Lock()
        self._frames: List[bytes] = []
        self._segment_started_at: Optional[float] = None
        self.total_callbacks = 0

    @property
    def is_recording(self) -> bool:
        return self._segment_started_at is not None

    def acquire(self) -> None:
        """Open the input stream (idempotent)."""
        if self.stream is not None:
            return
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=self._on_audio,
            )
        except Exception:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
            raise
        self.stream.start_stream()
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.frames_per_buffer} samples/buffer")

    def _on_audio(self, in_data, frame_count, time_info, status_flags):
        """PyAudio callback: buffer frames for the open segment and meter them."""
        self.total_callbacks += 1
        with self._lock:
            if self._segment_started_at is not None:
                self._frames.append(in_data)
        callback = self.metering_callback
        if callback is not None:
            try:
                callback(pcm16_to_dbfs(in_data))
            except Exception as e:
                logger.error(f"Metering callback failed: {e}", exc_info=True)
        return (None, pyaudio.paContinue)

    def start_segment(self) -> None:
        if self.stream is None:
            raise RuntimeError("Capture device not acquired")
        with self._lock:
            self._frames = []
            self._segment_started_at = time.time()
        logger.debug("Started new recording segment")

    def stop_segment(self) -> Optional[RecordedSegment]:
        with self._lock:
            started_at = self._segment_started_at
            frames = self._frames
            self._frames = []
            self._segment_started_at = None
        if started_at is None:
            return None
        ended_at = time.time()
        segment = RecordedSegment(
            data=self._encode_wav(frames),
            started_at=started_at,
            ended_at=ended_at,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        logger.debug(f"Stopped segment: {len(frames)} buffers, {len(segment.data)} bytes")
        return segment

    def _encode_wav(self, frames: List[bytes]) -> bytes:
        buffer = io.BytesIO()
        with wave.open(buffer, 'wb') as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(pyaudio.get_sample_size(self.format))
            wf.setframerate(self.sample_rate)
            for chunk in frames:
                wf.writeframes(chunk)
        return buffer.getvalue()

    def release(self) -> None:
        """Stop the stream and free the device; every step runs even if one fails."""
        with self._lock:
            self._frames = []
            self._segment_started_at = None
        stream, self.stream = self.stream, None
        instance, self.pyaudio_instance = self.pyaudio_instance, None
        try:
            if stream is not None:
                try:
                    stream.stop_stream()
                finally:
                    stream.close()
        finally:
            if instance is not None:
                instance.terminate()
                logger.info("Audio capture device released")

    def __del__(self):
        """Ensure resources are cleaned up on deletion."""
        if self.stream is not None:
            self.release()
