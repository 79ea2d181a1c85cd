"""Audio session state machine for monitors and listeners."""

import asyncio
import logging
import time
from typing import Callable, Optional, Set, Union

from ..audio.level import AudioLevelEstimator
from ..errors import (
    BabyfoonError,
    CredentialExpiredError,
    InvalidChannelCodeError,
    InvalidStateError,
    StreamNotFoundError,
    TransportError,
    ValidationError,
)
from ..models.events import AudioLevelEvent, LoudNoiseEvent, PeerEvent, SessionStateEvent
from ..models.session import Role, SessionRecord, SessionState, ValidationResult
from ..models.token import JoinCredential
from ..tokens.providers import TokenProvider
from ..transport.base import EngineEventHandler, RtcEngine
from .directory_client import as_directory_client
from .publisher import SessionEventPublisher

logger = logging.getLogger(__name__)

STARTABLE_STATES = (SessionState.IDLE, SessionState.LEFT, SessionState.ERROR)
DEFAULT_PRESENCE_CHECK_SECONDS = 5.0


class AudioSession:
    """One device's participation in a channel, as broadcaster or audience.

    Calls to ``start``, ``mute``/``unmute`` and ``stop`` are serialized so two
    transitions never run at the same time. The session exclusively owns its
    engine between ``start`` and ``stop``.
    """

    def __init__(self,
                 engine: RtcEngine,
                 token_provider: TokenProvider,
                 directory,
                 estimator: Optional[AudioLevelEstimator] = None,
                 publisher: Optional[SessionEventPublisher] = None,
                 uid: int = 0,
                 presence_check_seconds: Optional[float] = DEFAULT_PRESENCE_CHECK_SECONDS,
                 clock: Callable[[], float] = time.time):
        """Initialize session.

        Args:
            engine: Audio transport used for this session
            token_provider: Source of join credentials
            directory: DirectoryClient, or a ChannelDirectory shared in-process
            estimator: Loudness detector for metering callbacks
            publisher: Output event publisher
            uid: Requested user id (0 lets the transport assign one)
            presence_check_seconds: How often a listener re-checks that its
                broadcaster is still registered; None disables the check
            clock: Unix time source used for credential expiry checks
        """
        self.engine = engine
        self.token_provider = token_provider
        self.directory = as_directory_client(directory)
        self.estimator = estimator or AudioLevelEstimator()
        self.publisher = publisher or SessionEventPublisher()
        self.uid = uid
        self.presence_check_seconds = presence_check_seconds
        self._clock = clock

        self.state = SessionState.IDLE
        self.role: Optional[Role] = None
        self.channel_code: Optional[str] = None
        self.credential: Optional[JoinCredential] = None
        self.record: Optional[SessionRecord] = None
        self.last_error: Optional[BabyfoonError] = None
        self.peers: Set[int] = set()

        self._lock = asyncio.Lock()
        self._engine_active = False
        self._background: Set[asyncio.Task] = set()
        self._presence_task: Optional[asyncio.Task] = None

    @property
    def is_muted(self) -> bool:
        return self.state is SessionState.MUTED

    async def start(self, role: Union[Role, int], channel_code: Optional[str] = None) -> SessionState:
        """Join a channel.

        A broadcaster without ``channel_code`` gets a freshly allocated code.
        Any failure moves the session to ERROR and is re-raised; nothing is
        retried.

        Returns:
            The session state after joining (JOINED)

        Raises:
            InvalidStateError: if the session is already started
            ValidationError, StreamNotFoundError, ChannelUnavailableError,
            ConfigurationError, UpstreamError, TransportError: join failures
        """
        async with self._lock:
            if self.state not in STARTABLE_STATES:
                raise InvalidStateError(f"Cannot start from state {self.state.value}")

            self.channel_code = channel_code
            self.last_error = None
            self.peers.clear()
            self.estimator.reset()
            self._transition(SessionState.INITIALIZING)

            try:
                self.role = role if isinstance(role, Role) else self._parse_role(role)
                self.record = await self._claim_record(self.role, channel_code)
                self.channel_code = self.record.code

                credential = await self.token_provider.fetch(self.channel_code, self.uid, self.role)
                if credential.is_expired(self._clock()):
                    raise CredentialExpiredError()

                self._prepare_engine(credential.app_id, self.role)
                await self._join(credential)
                self.credential = credential
            except Exception as e:
                error = e if isinstance(e, BabyfoonError) else TransportError(str(e))
                logger.error(f"Failed to start {self._role_name()} session for {self.channel_code}: {error}")
                await self._teardown()
                self.last_error = error
                self._transition(SessionState.ERROR, reason=error.detail)
                if error is e:
                    raise
                raise error from e
            except asyncio.CancelledError:
                logger.warning(f"Start of {self._role_name()} session for {self.channel_code} cancelled")
                await self._teardown()
                self._transition(SessionState.LEFT, reason="start cancelled")
                raise

            self._transition(SessionState.JOINED)
            if self.role is Role.AUDIENCE and self.presence_check_seconds:
                self._presence_task = asyncio.create_task(self._watch_broadcaster(self.channel_code))
            return self.state

    async def mute(self, on: bool = True) -> SessionState:
        """Suppress outbound (broadcaster) or inbound (audience) audio.

        Raises:
            InvalidStateError: if the session is not joined
            TransportError: if the transport rejects the change; state is unchanged
        """
        async with self._lock:
            if not self.state.is_joined:
                raise InvalidStateError(f"Cannot change mute from state {self.state.value}")
            try:
                if self.role is Role.BROADCASTER:
                    self.engine.mute_local(on)
                else:
                    self.engine.mute_remote(on)
            except BabyfoonError:
                raise
            except Exception as e:
                raise TransportError(f"Mute failed: {e}") from e

            target = SessionState.MUTED if on else SessionState.UNMUTED
            if target is not self.state:
                self._transition(target)
            return self.state

    async def unmute(self) -> SessionState:
        return await self.mute(False)

    async def stop(self) -> SessionState:
        """Leave the channel and release everything this session holds.

        Harmless from IDLE or LEFT. Transport errors while leaving are logged
        and never block the cleanup.
        """
        async with self._lock:
            if self.state in (SessionState.IDLE, SessionState.LEFT):
                return self.state
            reason = await self._teardown()
            self._transition(SessionState.LEFT, reason=reason)
            return self.state

    async def wait_for_background(self) -> None:
        """Wait for pending connection-loss handling to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _parse_role(self, value) -> Role:
        try:
            return Role.from_wire(value)
        except ValueError as e:
            raise ValidationError(str(e))

    def _role_name(self) -> str:
        return self.role.name.lower() if self.role is not None else "unknown"

    async def _claim_record(self, role: Role, channel_code: Optional[str]) -> SessionRecord:
        if role is Role.BROADCASTER:
            code = channel_code if channel_code is not None else await self.directory.allocate_code()
            return await self.directory.register_broadcaster(code)

        if channel_code is None:
            raise InvalidChannelCodeError("A channel code is required to listen")
        result = await self.directory.validate(channel_code)
        if result is ValidationResult.INVALID_FORMAT:
            raise InvalidChannelCodeError(f"Invalid code: {channel_code!r}")
        if result is ValidationResult.NOT_FOUND:
            raise StreamNotFoundError(f"No active broadcaster for {channel_code}")
        return await self.directory.attach_listener(channel_code)

    def _prepare_engine(self, app_id: str, role: Role) -> None:
        self._engine_active = True
        self.engine.initialize(app_id)
        self.engine.enable_audio()
        self.engine.set_role(role)
        self.engine.register_event_handler(EngineEventHandler(
            on_joined=self._on_joined,
            on_peer_joined=self._on_peer_joined,
            on_peer_left=self._on_peer_left,
            on_volume_indication=self._on_volume_indication,
            on_connection_lost=self._on_connection_lost,
        ))

    async def _join(self, credential: JoinCredential) -> None:
        logger.info(f"Joining channel {self.channel_code} as {self._role_name()} via {self.engine.name}")
        await self.engine.join(credential.token, self.channel_code, credential.uid)

    async def _teardown(self) -> Optional[str]:
        """Best-effort release of the engine, credential and directory record.

        Returns:
            The first error message met while tearing down, if any
        """
        reason = None
        presence, self._presence_task = self._presence_task, None
        if presence is not None and not presence.done():
            presence.cancel()
            try:
                await presence
            except asyncio.CancelledError:
                pass

        if self._engine_active:
            self._engine_active = False
            try:
                await self.engine.leave()
            except Exception as e:
                logger.warning(f"Leaving channel {self.channel_code} failed: {e}")
                reason = str(e)
            try:
                self.engine.release()
            except Exception as e:
                logger.warning(f"Releasing {self.engine.name} failed: {e}")
                reason = reason or str(e)

        self.credential = None
        record, self.record = self.record, None
        if record is not None:
            try:
                if record.role is Role.BROADCASTER:
                    await self.directory.deactivate(record.code)
                else:
                    await self.directory.detach_listener(record)
            except Exception as e:
                logger.warning(f"Releasing directory record for {record.code} failed: {e}")
                reason = reason or str(e)
            record.active = False
        self.peers.clear()
        return reason

    async def _watch_broadcaster(self, channel_code: str) -> None:
        """Report a lost connection once the channel's broadcaster leaves the directory.

        Storage keeps the last chunk after a broadcaster stops, so the
        transport alone cannot tell a stopped monitor from a quiet one.
        """
        while True:
            await asyncio.sleep(self.presence_check_seconds)
            try:
                result = await self.directory.validate(channel_code)
            except Exception as e:
                logger.warning(f"Presence check for {channel_code} failed: {e}")
                continue
            if result is ValidationResult.NOT_FOUND:
                self._on_connection_lost(StreamNotFoundError(f"Broadcaster of {channel_code} has stopped"))
                return

    def _transition(self, new_state: SessionState, reason: Optional[str] = None) -> None:
        previous = self.state
        self.state = new_state
        message = f"Session {self.channel_code or '----'}: {previous.value} -> {new_state.value}"
        if reason:
            message += f" ({reason})"
        if new_state is SessionState.ERROR:
            logger.warning(message)
        else:
            logger.info(message)
        self.publisher.publish_state(SessionStateEvent(
            channel_code=self.channel_code,
            role=self.role,
            previous=previous,
            current=new_state,
            reason=reason,
        ))

    # Engine callbacks, invoked on the event loop

    def _on_joined(self, channel_name: str, uid: int) -> None:
        logger.debug(f"Transport confirmed join of {channel_name} as uid {uid}")

    def _on_peer_joined(self, uid: int) -> None:
        self.peers.add(uid)
        self.publisher.publish_peer(PeerEvent(self.channel_code, uid, joined=True))

    def _on_peer_left(self, uid: int) -> None:
        self.peers.discard(uid)
        self.publisher.publish_peer(PeerEvent(self.channel_code, uid, joined=False))

    def _on_volume_indication(self, raw_dbfs: float) -> None:
        level = self.estimator.on_metering_sample(raw_dbfs)
        self.publisher.publish_level(AudioLevelEvent(self.channel_code, level, raw_dbfs))
        if self.role is Role.BROADCASTER and self.state.is_joined and self.estimator.should_alert(level):
            self.publisher.publish_alert(
                LoudNoiseEvent(self.channel_code, level, self.estimator.threshold)
            )

    def _on_connection_lost(self, error: Exception) -> None:
        task = asyncio.ensure_future(self._handle_connection_lost(error))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _handle_connection_lost(self, error: Exception) -> None:
        async with self._lock:
            if not self.state.is_joined:
                return
            self.last_error = error if isinstance(error, BabyfoonError) else TransportError(str(error))
            logger.error(f"Lost channel {self.channel_code}: {self.last_error}")
            await self._teardown()
            self._transition(SessionState.ERROR, reason=self.last_error.detail)
