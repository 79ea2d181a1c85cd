"""Chunked record/upload pipeline approximating a live stream over object storage."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from ..audio.base import SegmentRecorder
from ..models.audio import AudioChunk, RecordedSegment
from ..storage.base import ObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 3.0


@dataclass
class PipelineStats:
    """Counters of the capture/upload loop."""
    segments_recorded: int = 0
    segments_discarded: int = 0
    uploads_succeeded: int = 0
    uploads_failed: int = 0
    capture_failures: int = 0
    last_uploaded_key: Optional[str] = None


class ChunkedFallbackPipeline:
    """Records fixed-length segments and uploads each under the channel's namespace.

    Every ``interval_seconds`` the current segment is stopped, handed off for
    upload and a new segment is started immediately; uploads run as
    background tasks so capture never waits on the network. A failed upload
    or a failed segment start is logged and the loop carries on.
    """

    def __init__(self,
                 channel_code: str,
                 recorder: SegmentRecorder,
                 storage: ObjectStorage,
                 interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
                 extension: str = "wav",
                 content_type: str = "audio/wav"):
        """Initialize pipeline.

        Args:
            channel_code: Channel whose namespace receives the chunks
            recorder: Capture device, exclusively owned while the pipeline runs
            storage: Shared object storage
            interval_seconds: Segment length
            extension: File extension of uploaded chunks
            content_type: MIME type of uploaded chunks
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.channel_code = channel_code
        self.recorder = recorder
        self.storage = storage
        self.interval_seconds = interval_seconds
        self.extension = extension.lstrip(".")
        self.content_type = content_type

        self.muted = False
        self.stats = PipelineStats()
        self.last_public_url: Optional[str] = None

        self._running = False
        self._device_acquired = False
        self._timer_task: Optional[asyncio.Task] = None
        self._uploads: Set[asyncio.Task] = set()
        self._last_sequence = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_uploads(self) -> int:
        return len(self._uploads)

    async def start(self) -> None:
        """Acquire the microphone, start the first segment and the segment timer.

        Raises:
            Exception: whatever the recorder raises when the device cannot be acquired
        """
        if self._running:
            logger.warning(f"Pipeline for channel {self.channel_code} already running")
            return

        self.recorder.acquire()
        self._device_acquired = True
        self._running = True
        self._start_segment()
        self._timer_task = asyncio.create_task(self._run_timer())
        logger.info(f"Chunked pipeline started for channel {self.channel_code} "
                    f"({self.interval_seconds}s segments)")

    async def _run_timer(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.rotate_segment()

    async def rotate_segment(self) -> None:
        """Stop the current segment, start the next one and hand the finished one off."""
        segment = None
        if self.recorder.is_recording:
            try:
                segment = self.recorder.stop_segment()
            except Exception as e:
                logger.error(f"Failed to stop segment for channel {self.channel_code}: {e}")

        self._start_segment()

        if segment is not None:
            self._hand_off(segment)

    def _start_segment(self) -> bool:
        try:
            self.recorder.start_segment()
            return True
        except Exception as e:
            self.stats.capture_failures += 1
            logger.error(f"Failed to start segment for channel {self.channel_code}, "
                         f"retrying on next tick: {e}")
            return False

    def _hand_off(self, segment: RecordedSegment) -> None:
        self.stats.segments_recorded += 1
        if self.muted:
            self.stats.segments_discarded += 1
            logger.debug("Muted: discarding finished segment")
            return
        if not segment.data:
            logger.warning("Skipping empty segment")
            return

        chunk = self._make_chunk(segment)
        task = asyncio.create_task(self._upload(chunk))
        self._uploads.add(task)
        task.add_done_callback(self._uploads.discard)

    def _make_chunk(self, segment: RecordedSegment) -> AudioChunk:
        sequence = int(segment.started_at * 1000)
        # Keys stay strictly increasing even if the clock stalls or steps back
        if sequence <= self._last_sequence:
            sequence = self._last_sequence + 1
        self._last_sequence = sequence
        return AudioChunk(
            channel_code=self.channel_code,
            sequence_number=sequence,
            data=segment.data,
            mime_type=self.content_type,
            extension=self.extension,
        )

    async def _upload(self, chunk: AudioChunk) -> bool:
        try:
            url = await self.storage.upload(chunk.key, chunk.data, chunk.mime_type, upsert=True)
        except Exception as e:
            self.stats.uploads_failed += 1
            logger.error(f"Upload failed for {chunk.key}: {e}")
            return False

        self.stats.uploads_succeeded += 1
        self.stats.last_uploaded_key = chunk.key
        self.last_public_url = url
        logger.debug(f"Uploaded chunk {chunk.key} ({len(chunk.data)} bytes)")
        return True

    async def wait_for_uploads(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight uploads; returns False if some are still running after ``timeout``."""
        pending = list(self._uploads)
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def stop(self, upload_final: bool = True, drain_timeout: Optional[float] = 5.0) -> None:
        """Tear down: cancel the timer, finish the in-flight segment, release the microphone.

        Every step runs even if an earlier one fails. The final partial segment
        is uploaded best-effort after the device has been released.
        """
        if not self._running and not self._device_acquired:
            return
        self._running = False

        final_segment = None
        try:
            timer, self._timer_task = self._timer_task, None
            if timer is not None:
                timer.cancel()
                try:
                    await timer
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Segment timer failed: {e}")
        finally:
            try:
                if self.recorder.is_recording:
                    final_segment = self.recorder.stop_segment()
            except Exception as e:
                logger.warning(f"Failed to stop final segment: {e}")
            finally:
                self._device_acquired = False
                self.recorder.release()
                logger.info(f"Chunked pipeline stopped for channel {self.channel_code}")

        if final_segment is not None and upload_final:
            self._hand_off(final_segment)
        if not await self.wait_for_uploads(drain_timeout):
            logger.warning(f"{self.pending_uploads} uploads still running after stop")
