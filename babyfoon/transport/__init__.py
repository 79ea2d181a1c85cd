"""Transport selection: one polymorphic engine chosen once per session."""

import logging
from typing import Callable, Optional

from ..errors import ConfigurationError
from .base import RtcEngine, EngineEventHandler
from .chunked import ChunkedEngine

logger = logging.getLogger(__name__)

TRANSPORT_MODES = ("auto", "rtc", "chunked")

__all__ = [
    "RtcEngine",
    "EngineEventHandler",
    "ChunkedEngine",
    "TRANSPORT_MODES",
    "create_engine",
]


def create_engine(config,
                  storage=None,
                  recorder_factory=None,
                  player_factory=None,
                  rtc_engine_factory: Optional[Callable[[], RtcEngine]] = None) -> RtcEngine:
    """Build the engine for one session attempt according to ``transport.mode``.

    ``auto`` picks the real-time engine when a factory is provided and the
    chunked engine otherwise.

    Raises:
        ConfigurationError: unknown mode, ``rtc`` without a real-time engine,
            or ``chunked`` without storage
    """
    mode = str(config.get('transport.mode', 'auto')).lower()
    if mode not in TRANSPORT_MODES:
        raise ConfigurationError(f"Unknown transport mode: {mode}")

    if mode == "rtc" or (mode == "auto" and rtc_engine_factory is not None):
        if rtc_engine_factory is None:
            raise ConfigurationError("Real-time transport is not available in this build")
        engine = rtc_engine_factory()
        logger.info(f"Selected real-time transport {engine.name}")
        return engine

    if storage is None:
        raise ConfigurationError("Chunked transport requires object storage")
    logger.info("Selected chunked fallback transport")
    return ChunkedEngine(
        storage=storage,
        recorder_factory=recorder_factory,
        player_factory=player_factory,
        interval_seconds=float(config.get('chunked.interval_seconds', 3.0)),
        extension=config.get('chunked.extension', 'wav'),
        content_type=config.get('chunked.content_type', 'audio/wav'),
        poll_interval_seconds=float(config.get('chunked.poll_interval_seconds', 3.0)),
        max_missed_polls=int(config.get('chunked.max_missed_polls', 3)),
    )
