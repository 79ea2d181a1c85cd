"""Unit tests for transport selection and the chunked engine."""

import asyncio

import pytest

from babyfoon.config import BabyfoonConfig
from babyfoon.errors import ConfigurationError, StreamNotFoundError, TransportError
from babyfoon.models.session import Role
from babyfoon.transport import ChunkedEngine, EngineEventHandler, create_engine


class HandlerLog:
    def __init__(self):
        self.joined = []
        self.volumes = []
        self.lost = []

    def handler(self) -> EngineEventHandler:
        return EngineEventHandler(
            on_joined=lambda channel, uid: self.joined.append((channel, uid)),
            on_volume_indication=self.volumes.append,
            on_connection_lost=self.lost.append,
        )


def _engine(storage, role, recorder=None, player=None, **kwargs):
    kwargs.setdefault("interval_seconds", 3600)
    engine = ChunkedEngine(
        storage,
        recorder_factory=(lambda: recorder) if recorder is not None else None,
        player_factory=(lambda: player) if player is not None else None,
        **kwargs,
    )
    engine.initialize("test-app")
    engine.enable_audio()
    engine.set_role(role)
    return engine


@pytest.mark.unit
class TestCreateEngine:
    """Test cases for per-session transport selection."""

    def test_auto_without_realtime_engine_uses_chunked(self, fake_storage):
        engine = create_engine(BabyfoonConfig(), storage=fake_storage)
        assert isinstance(engine, ChunkedEngine)
        assert engine.interval_seconds == 3.0
        assert engine.max_missed_polls == 3

    def test_auto_prefers_realtime_engine(self, fake_storage, make_engine):
        realtime = make_engine()
        engine = create_engine(BabyfoonConfig(), storage=fake_storage, rtc_engine_factory=lambda: realtime)
        assert engine is realtime

    def test_rtc_mode_requires_realtime_engine(self, fake_storage):
        config = BabyfoonConfig()
        config.set('transport.mode', 'rtc')
        with pytest.raises(ConfigurationError):
            create_engine(config, storage=fake_storage)

    def test_chunked_mode_ignores_realtime_engine(self, fake_storage, make_engine):
        config = BabyfoonConfig()
        config.set('transport.mode', 'chunked')
        config.set('chunked.interval_seconds', 1.5)
        engine = create_engine(config, storage=fake_storage, rtc_engine_factory=make_engine)
        assert isinstance(engine, ChunkedEngine)
        assert engine.interval_seconds == 1.5

    def test_chunked_requires_storage(self):
        with pytest.raises(ConfigurationError):
            create_engine(BabyfoonConfig())

    def test_unknown_mode(self, fake_storage):
        config = BabyfoonConfig()
        config.set('transport.mode', 'carrier-pigeon')
        with pytest.raises(ConfigurationError):
            create_engine(config, storage=fake_storage)


@pytest.mark.unit
class TestChunkedEngineBroadcaster:

    def test_join_starts_capture_and_forwards_metering(self, fake_storage, make_recorder):
        recorder = make_recorder()
        engine = _engine(fake_storage, Role.BROADCASTER, recorder=recorder)
        log = HandlerLog()
        engine.register_event_handler(log.handler())

        async def scenario():
            await engine.join("007token", "4821", 0)
            assert engine.pipeline.is_running
            assert recorder.acquired
            recorder.meter(-12.5)
            await asyncio.sleep(0)
            await engine.leave()

        asyncio.run(scenario())

        assert log.joined == [("4821", 0)]
        assert log.volumes == [-12.5]
        assert engine.pipeline is None
        assert recorder.release_count == 1
        assert fake_storage.uploaded_data == [b"segment-1"]

    def test_mute_local_discards_segments(self, fake_storage, make_recorder):
        recorder = make_recorder()
        engine = _engine(fake_storage, Role.BROADCASTER, recorder=recorder)

        async def scenario():
            engine.mute_local(True)
            await engine.join("007token", "4821", 0)
            assert engine.pipeline.muted
            await engine.leave()

        asyncio.run(scenario())

        assert fake_storage.upload_attempts == []

    def test_release_clears_mute_flags(self, fake_storage, make_recorder):
        engine = _engine(fake_storage, Role.BROADCASTER, recorder=make_recorder())

        async def scenario():
            await engine.join("007token", "4821", 0)
            engine.mute_local(True)
            engine.mute_remote(True)
            await engine.leave()
            engine.release()

            engine.set_role(Role.BROADCASTER)
            await engine.join("007token", "4821", 0)
            try:
                return engine.pipeline.muted
            finally:
                await engine.leave()

        assert asyncio.run(scenario()) is False
        assert engine._remote_muted is False

    def test_capture_failure_is_transport_error(self, fake_storage, make_recorder):
        recorder = make_recorder(fail_acquire=True)
        engine = _engine(fake_storage, Role.BROADCASTER, recorder=recorder)

        with pytest.raises(TransportError):
            asyncio.run(engine.join("007token", "4821", 0))

        assert recorder.release_count == 1
        assert engine.pipeline is None

    def test_missing_capture_device(self, fake_storage):
        engine = _engine(fake_storage, Role.BROADCASTER)
        with pytest.raises(TransportError):
            asyncio.run(engine.join("007token", "4821", 0))

    def test_join_preconditions(self, fake_storage, make_recorder):
        engine = ChunkedEngine(fake_storage, recorder_factory=make_recorder)
        with pytest.raises(TransportError):
            asyncio.run(engine.join("", "4821", 0))
        with pytest.raises(TransportError):
            asyncio.run(engine.join("007token", "4821", 0))
        engine.set_role(Role.BROADCASTER)
        with pytest.raises(TransportError, match="Audio is not enabled"):
            asyncio.run(engine.join("007token", "4821", 0))

    def test_double_join_rejected(self, fake_storage, make_recorder):
        engine = _engine(fake_storage, Role.BROADCASTER, recorder=make_recorder())

        async def scenario():
            await engine.join("007token", "4821", 0)
            try:
                with pytest.raises(TransportError):
                    await engine.join("007token", "4821", 0)
            finally:
                await engine.leave()

        asyncio.run(scenario())


@pytest.mark.unit
class TestChunkedEngineAudience:

    def test_join_plays_latest_chunk(self, fake_storage, fake_player):
        engine = _engine(fake_storage, Role.AUDIENCE, player=fake_player, poll_interval_seconds=0.01)

        async def scenario():
            await fake_storage.upload("4821/1000.wav", b"chunk", "audio/wav")
            await engine.join("007token", "4821", 0)
            await asyncio.sleep(0.05)
            await engine.leave()

        asyncio.run(scenario())

        assert fake_player.played == [b"chunk"]
        assert fake_player.stopped
        assert engine.poller is None

    def test_mute_remote_skips_playback(self, fake_storage, fake_player):
        engine = _engine(fake_storage, Role.AUDIENCE, player=fake_player, poll_interval_seconds=0.01)

        async def scenario():
            await fake_storage.upload("4821/1000.wav", b"chunk", "audio/wav")
            await engine.join("007token", "4821", 0)
            engine.mute_remote(True)
            await asyncio.sleep(0.05)
            await engine.leave()

        asyncio.run(scenario())

        assert fake_player.played == []

    def test_missing_stream_reports_connection_lost(self, fake_storage, fake_player):
        engine = _engine(fake_storage, Role.AUDIENCE, player=fake_player,
                         poll_interval_seconds=0, max_missed_polls=1)
        log = HandlerLog()
        engine.register_event_handler(log.handler())

        async def scenario():
            await engine.join("007token", "4821", 0)
            for _ in range(50):
                if log.lost:
                    break
                await asyncio.sleep(0.01)
            await engine.leave()

        asyncio.run(scenario())

        assert len(log.lost) == 1
        assert isinstance(log.lost[0], StreamNotFoundError)
