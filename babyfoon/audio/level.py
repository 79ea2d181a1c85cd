"""Audio level estimation and debounced loud-noise detection."""

import logging
import math
import time
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)

SILENCE_DBFS = -160.0
DEFAULT_LOUD_THRESHOLD = 0.7
DEFAULT_DEBOUNCE_SECONDS = 10.0


def normalize_level(raw_dbfs: float) -> float:
    """Map a dBFS metering value (about -160..0) onto 0..1.

    Non-finite input is treated as silence.
    """
    try:
        raw = float(raw_dbfs)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(raw):
        return 0.0
    return max(0.0, min(1.0, (raw - SILENCE_DBFS) / -SILENCE_DBFS))


def pcm16_to_dbfs(audio_data: bytes) -> float:
    """RMS level of little-endian 16-bit PCM in dBFS, floored at SILENCE_DBFS."""
    usable = len(audio_data) - (len(audio_data) % 2)
    if usable <= 0:
        return SILENCE_DBFS
    samples = np.frombuffer(audio_data[:usable], dtype="<i2").astype(np.float64) / 32768.0
    rms = float(np.sqrt(np.mean(np.square(samples))))
    if rms <= 0.0:
        return SILENCE_DBFS
    return max(SILENCE_DBFS, 20.0 * math.log10(rms))


class AudioLevelEstimator:
    """Converts metering samples to levels and fires debounced loud-noise alerts.

    Once an alert fires, further loud samples within ``debounce_seconds``
    do not fire again.
    """

    def __init__(self,
                 threshold: float = DEFAULT_LOUD_THRESHOLD,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize estimator.

        Args:
            threshold: Normalized level above which a sample counts as loud
            debounce_seconds: Minimum spacing between two alerts
            clock: Monotonic time source in seconds
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must be non-negative")
        self.threshold = threshold
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self.last_level = 0.0
        self.last_alert_timestamp: Optional[float] = None

    def on_metering_sample(self, raw_dbfs: float) -> float:
        """Normalize one metering sample and remember it as the current level."""
        self.last_level = normalize_level(raw_dbfs)
        return self.last_level

    def is_loud(self, level: float, threshold: Optional[float] = None) -> bool:
        """Return True if ``level`` is above the threshold."""
        limit = self.threshold if threshold is None else threshold
        return level > limit

    def should_alert(self, level: float, now: Optional[float] = None) -> bool:
        """Return True if a loud-noise alert fires for this level right now."""
        if not self.is_loud(level):
            return False
        if now is None:
            now = self._clock()
        if (self.last_alert_timestamp is not None
                and now - self.last_alert_timestamp < self.debounce_seconds):
            return False
        self.last_alert_timestamp = now
        logger.info(f"Loud noise detected: level={level:.2f} threshold={self.threshold:.2f}")
        return True

    def reset(self) -> None:
        """Forget the current level and the debounce window."""
        self.last_level = 0.0
        self.last_alert_timestamp = None
