"""Pytest configuration and fixtures for babyfoon tests."""

import logging
import tempfile
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pytest
from pubsub import pub

from babyfoon.audio.base import AudioPlayer, SegmentRecorder
from babyfoon.errors import StorageError
from babyfoon.models.audio import RecordedSegment, StoredObject
from babyfoon.services.directory import ChannelDirectory
from babyfoon.services.publisher import (
    AUDIO_LEVEL_TOPIC,
    LOUD_NOISE_TOPIC,
    PEER_PRESENCE_TOPIC,
    SESSION_STATE_TOPIC,
    declare_topics,
)
from babyfoon.storage.base import ObjectStorage
from babyfoon.tokens.service import TokenService
from babyfoon.transport.base import RtcEngine


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

APP_ID = "test-app"
APP_CERTIFICATE = "test-secret"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRecorder(SegmentRecorder):
    """In-memory recorder; segment N carries ``b"segment-N"``."""

    def __init__(self, clock: Optional[FakeClock] = None, fail_starts: Optional[Set[int]] = None,
                 fail_acquire: bool = False):
        super().__init__()
        self.clock = clock or FakeClock()
        self.fail_starts = fail_starts or set()
        self.fail_acquire = fail_acquire
        self.acquired = False
        self.release_count = 0
        self.start_attempts = 0
        self.segments_started = 0
        self._recording_since: Optional[float] = None

    def acquire(self) -> None:
        if self.fail_acquire:
            raise OSError("Microphone busy")
        self.acquired = True

    def start_segment(self) -> None:
        self.start_attempts += 1
        if self.start_attempts in self.fail_starts:
            raise OSError(f"start {self.start_attempts} failed")
        self.segments_started += 1
        self._recording_since = self.clock()

    def stop_segment(self) -> Optional[RecordedSegment]:
        if self._recording_since is None:
            return None
        started_at, self._recording_since = self._recording_since, None
        return RecordedSegment(
            data=f"segment-{self.segments_started}".encode(),
            started_at=started_at,
            ended_at=self.clock(),
        )

    def release(self) -> None:
        self.acquired = False
        self._recording_since = None
        self.release_count += 1

    @property
    def is_recording(self) -> bool:
        return self._recording_since is not None

    def meter(self, dbfs: float) -> None:
        if self.metering_callback is not None:
            self.metering_callback(dbfs)


class FakeStorage(ObjectStorage):
    """In-memory bucket; uploads listed in ``fail_uploads`` (1-based) raise StorageError."""

    def __init__(self, fail_uploads: Optional[Set[int]] = None):
        self.objects: Dict[str, Tuple[bytes, str, int]] = {}
        self.fail_uploads = fail_uploads or set()
        self.fail_list = False
        self.upload_attempts: List[str] = []
        self.closed = False
        self._counter = 0

    async def upload(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        self.upload_attempts.append(key)
        if len(self.upload_attempts) in self.fail_uploads:
            raise StorageError(f"Injected failure for {key}")
        if key in self.objects and not upsert:
            raise StorageError(f"Object already exists: {key}")
        self._counter += 1
        self.objects[key] = (data, content_type, self._counter)
        return self.public_url(key)

    async def list_objects(self, prefix: str, limit: int = 100) -> List[StoredObject]:
        if self.fail_list:
            raise StorageError("Injected list failure")
        matching = [
            (order, key, data) for key, (data, _, order) in self.objects.items() if key.startswith(prefix)
        ]
        matching.sort(reverse=True)
        return [
            StoredObject(key=key, size=len(data), created_at=float(order))
            for order, key, data in matching[:limit]
        ]

    def public_url(self, key: str) -> str:
        return f"memory://audio-streams/{key}"

    async def download(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageError(f"No such object: {key}")
        return self.objects[key][0]

    async def close(self) -> None:
        self.closed = True

    @property
    def uploaded_data(self) -> List[bytes]:
        return [data for data, _, _ in sorted(self.objects.values(), key=lambda item: item[2])]


class FakePlayer(AudioPlayer):
    def __init__(self):
        self.played: List[bytes] = []
        self.stopped = False

    async def play(self, data: bytes) -> None:
        self.played.append(data)

    async def stop(self) -> None:
        self.stopped = True


class FakeEngine(RtcEngine):
    """Transport stub recording every call it receives."""

    def __init__(self, join_error: Optional[Exception] = None, leave_error: Optional[Exception] = None,
                 mute_error: Optional[Exception] = None):
        super().__init__()
        self.join_error = join_error
        self.leave_error = leave_error
        self.mute_error = mute_error
        self.calls: List[tuple] = []
        self.joined_channel: Optional[str] = None
        self.audio_enabled = False
        self.released = False

    def initialize(self, app_id: str) -> None:
        super().initialize(app_id)
        self.calls.append(("initialize", app_id))

    def enable_audio(self) -> None:
        self.audio_enabled = True
        self.calls.append(("enable_audio",))

    def set_role(self, role) -> None:
        super().set_role(role)
        self.calls.append(("set_role", role))

    async def join(self, token: str, channel_name: str, uid: int) -> None:
        self.calls.append(("join", token, channel_name, uid))
        if self.join_error is not None:
            raise self.join_error
        self.joined_channel = channel_name
        self.handler.on_joined(channel_name, uid)

    async def leave(self) -> None:
        self.calls.append(("leave",))
        self.joined_channel = None
        if self.leave_error is not None:
            raise self.leave_error

    def mute_local(self, muted: bool) -> None:
        self.calls.append(("mute_local", muted))
        if self.mute_error is not None:
            raise self.mute_error

    def mute_remote(self, muted: bool) -> None:
        self.calls.append(("mute_remote", muted))
        if self.mute_error is not None:
            raise self.mute_error

    def release(self) -> None:
        super().release()
        self.released = True
        self.calls.append(("release",))

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class EventRecorder:
    """Collects every event published on the session topics."""

    def __init__(self):
        self.states = []
        self.levels = []
        self.alerts = []
        self.peers = []

    def on_state(self, event):
        self.states.append(event)

    def on_level(self, event):
        self.levels.append(event)

    def on_alert(self, event):
        self.alerts.append(event)

    def on_peer(self, event):
        self.peers.append(event)

    def subscribe(self) -> None:
        declare_topics()
        pub.subscribe(self.on_state, SESSION_STATE_TOPIC)
        pub.subscribe(self.on_level, AUDIO_LEVEL_TOPIC)
        pub.subscribe(self.on_alert, LOUD_NOISE_TOPIC)
        pub.subscribe(self.on_peer, PEER_PRESENCE_TOPIC)

    def unsubscribe(self) -> None:
        pub.unsubscribe(self.on_state, SESSION_STATE_TOPIC)
        pub.unsubscribe(self.on_level, AUDIO_LEVEL_TOPIC)
        pub.unsubscribe(self.on_alert, LOUD_NOISE_TOPIC)
        pub.unsubscribe(self.on_peer, PEER_PRESENCE_TOPIC)

    def transitions(self):
        return [(event.previous.value, event.current.value) for event in self.states]


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def token_service(fake_clock):
    return TokenService(APP_ID, APP_CERTIFICATE, ttl_seconds=3600, clock=fake_clock)


@pytest.fixture
def directory():
    return ChannelDirectory()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def events():
    """Subscribe an EventRecorder to all session topics for the test."""
    recorder = EventRecorder()
    recorder.subscribe()
    yield recorder
    recorder.unsubscribe()


@pytest.fixture
def audio_test_data():
    """Generate 16-bit PCM test audio."""
    def generate_audio(pattern="sine", duration_seconds=0.1, sample_rate=16000, amplitude=1.0):
        """Generate audio data for testing.

        Args:
            pattern: Type of audio pattern ('sine', 'silence')
            duration_seconds: Duration of audio
            sample_rate: Sample rate in Hz
            amplitude: Peak amplitude in [0, 1]

        Returns:
            bytes: Audio data as bytes
        """
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = amplitude * np.sin(2 * np.pi * 440 * t)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        audio_data = (wave_data * 32767).astype(np.int16)
        return audio_data.tobytes()

    return generate_audio


@pytest.fixture
def make_recorder(fake_clock):
    """Build FakeRecorders sharing the test clock."""
    def factory(fail_starts=None, fail_acquire=False):
        return FakeRecorder(clock=fake_clock, fail_starts=fail_starts, fail_acquire=fail_acquire)
    return factory


@pytest.fixture
def make_storage():
    return FakeStorage


@pytest.fixture
def make_engine():
    return FakeEngine


@pytest.fixture
def fake_player():
    return FakePlayer()
