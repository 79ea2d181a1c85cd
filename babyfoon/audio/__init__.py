"""Audio level estimation and device abstractions.

The PyAudio-backed devices live in ``babyfoon.audio.capture`` and
``babyfoon.audio.playback`` and are imported only where hardware is used.
"""

from .level import (
    AudioLevelEstimator,
    normalize_level,
    pcm16_to_dbfs,
    SILENCE_DBFS,
    DEFAULT_LOUD_THRESHOLD,
    DEFAULT_DEBOUNCE_SECONDS,
)
from .base import SegmentRecorder, AudioPlayer

__all__ = [
    'AudioLevelEstimator',
    'normalize_level',
    'pcm16_to_dbfs',
    'SILENCE_DBFS',
    'DEFAULT_LOUD_THRESHOLD',
    'DEFAULT_DEBOUNCE_SECONDS',
    'SegmentRecorder',
    'AudioPlayer',
]
