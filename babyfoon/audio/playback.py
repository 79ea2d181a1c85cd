"""PyAudio playback of downloaded WAV chunks."""

import asyncio
import io
import logging
import threading
import wave
from typing import Optional

import pyaudio

from .base import AudioPlayer

logger = logging.getLogger(__name__)


class PyAudioPlayer(AudioPlayer):
    """Plays one WAV chunk at a time on the default output device."""

    def __init__(self, frames_per_buffer: int = 1024):
        self.frames_per_buffer = frames_per_buffer
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self._stop_event = threading.Event()
        self._task: Optional[asyncio.Future] = None

    async def play(self, data: bytes) -> None:
        await self._cancel_current()
        if self.pyaudio_instance is None:
            self.pyaudio_instance = pyaudio.PyAudio()
        self._stop_event = threading.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.run_in_executor(None, self._play_blocking, data, self._stop_event)
        logger.debug(f"Playing chunk of {len(data)} bytes")

    def _play_blocking(self, data: bytes, stop_event: threading.Event) -> None:
        with wave.open(io.BytesIO(data), 'rb') as wf:
            stream = self.pyaudio_instance.open(
                format=self.pyaudio_instance.get_format_from_width(wf.getsampwidth()),
                channels=wf.getnchannels(),
                rate=wf.getframerate(),
                output=True,
            )
            try:
                frames = wf.readframes(self.frames_per_buffer)
                while frames and not stop_event.is_set():
                    stream.write(frames)
                    frames = wf.readframes(self.frames_per_buffer)
            finally:
                stream.stop_stream()
                stream.close()

    async def _cancel_current(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await self._task
        except Exception as e:
            logger.warning(f"Previous chunk playback failed: {e}")
        self._task = None

    async def stop(self) -> None:
        await self._cancel_current()
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
            logger.info("Audio playback device released")
