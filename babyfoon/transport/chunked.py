"""Engine realising the transport contract with the chunked fallback pipeline."""

import asyncio
import logging
from typing import Callable, Optional

from ..audio.base import AudioPlayer, SegmentRecorder
from ..errors import TransportError
from ..models.session import Role
from ..pipeline.chunked import ChunkedFallbackPipeline, DEFAULT_INTERVAL_SECONDS
from ..pipeline.poller import (
    LatestChunkPoller,
    DEFAULT_MAX_MISSED_POLLS,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from ..storage.base import ObjectStorage
from .base import RtcEngine

logger = logging.getLogger(__name__)


class ChunkedEngine(RtcEngine):
    """Broadcasts by uploading segments and listens by polling the newest one."""

    def __init__(self,
                 storage: ObjectStorage,
                 recorder_factory: Optional[Callable[[], SegmentRecorder]] = None,
                 player_factory: Optional[Callable[[], AudioPlayer]] = None,
                 interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
                 extension: str = "wav",
                 content_type: str = "audio/wav",
                 poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
                 max_missed_polls: int = DEFAULT_MAX_MISSED_POLLS):
        """Initialize chunked engine.

        Args:
            storage: Shared object storage holding the channel namespaces
            recorder_factory: Builds the capture device when joining as broadcaster
            player_factory: Builds the playback device when joining as audience
            interval_seconds: Segment length of the broadcaster pipeline
            extension: File extension of uploaded chunks
            content_type: MIME type of uploaded chunks
            poll_interval_seconds: Listener polling cadence
            max_missed_polls: Consecutive empty polls before the stream counts as gone
        """
        super().__init__()
        self.storage = storage
        self.recorder_factory = recorder_factory
        self.player_factory = player_factory
        self.interval_seconds = interval_seconds
        self.extension = extension
        self.content_type = content_type
        self.poll_interval_seconds = poll_interval_seconds
        self.max_missed_polls = max_missed_polls

        self.audio_enabled = False
        self.pipeline: Optional[ChunkedFallbackPipeline] = None
        self.poller: Optional[LatestChunkPoller] = None
        self.channel_name: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._local_muted = False
        self._remote_muted = False

    def enable_audio(self) -> None:
        self.audio_enabled = True

    async def join(self, token: str, channel_name: str, uid: int) -> None:
        if not token:
            raise TransportError("Missing join token")
        if self.role is None:
            raise TransportError("Role must be set before joining")
        if not self.audio_enabled:
            raise TransportError("Audio is not enabled")
        if self.pipeline is not None or self.poller is not None:
            raise TransportError(f"Already joined channel {self.channel_name}")

        self._loop = asyncio.get_running_loop()
        if self.role is Role.BROADCASTER:
            await self._join_as_broadcaster(channel_name)
        else:
            self._join_as_audience(channel_name)
        self.channel_name = channel_name
        logger.info(f"Joined channel {channel_name} as {self.role.name.lower()} (chunked)")
        self.handler.on_joined(channel_name, uid)

    async def _join_as_broadcaster(self, channel_name: str) -> None:
        if self.recorder_factory is None:
            raise TransportError("No capture device configured")
        try:
            recorder = self.recorder_factory()
        except Exception as e:
            raise TransportError(f"Capture device unavailable: {e}")
        recorder.set_metering_callback(self._on_metering)
        pipeline = ChunkedFallbackPipeline(
            channel_code=channel_name,
            recorder=recorder,
            storage=self.storage,
            interval_seconds=self.interval_seconds,
            extension=self.extension,
            content_type=self.content_type,
        )
        pipeline.muted = self._local_muted
        try:
            await pipeline.start()
        except Exception as e:
            try:
                recorder.release()
            except Exception as release_error:
                logger.warning(f"Failed to release capture device: {release_error}")
            raise TransportError(f"Failed to start capture: {e}")
        self.pipeline = pipeline

    def _join_as_audience(self, channel_name: str) -> None:
        player = self.player_factory() if self.player_factory is not None else None
        poller = LatestChunkPoller(
            channel_code=channel_name,
            storage=self.storage,
            player=player,
            poll_interval_seconds=self.poll_interval_seconds,
            max_missed_polls=self.max_missed_polls,
            on_error=self._on_poll_error,
        )
        poller.muted = self._remote_muted
        poller.start()
        self.poller = poller

    def _on_metering(self, dbfs: float) -> None:
        """Forward microphone metering (capture thread) to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.handler.on_volume_indication, dbfs)

    def _on_poll_error(self, error: Exception) -> None:
        self.handler.on_connection_lost(error)

    async def leave(self) -> None:
        pipeline, self.pipeline = self.pipeline, None
        poller, self.poller = self.poller, None
        try:
            if poller is not None:
                await poller.stop()
        finally:
            if pipeline is not None:
                await pipeline.stop()
        if pipeline is not None or poller is not None:
            logger.info(f"Left channel {self.channel_name} (chunked)")
        self.channel_name = None

    def mute_local(self, muted: bool) -> None:
        self._local_muted = muted
        if self.pipeline is not None:
            self.pipeline.muted = muted

    def mute_remote(self, muted: bool) -> None:
        self._remote_muted = muted
        if self.poller is not None:
            self.poller.muted = muted

    def release(self) -> None:
        super().release()
        self._loop = None
        # A released engine starts its next session unmuted
        self._local_muted = False
        self._remote_muted = False
