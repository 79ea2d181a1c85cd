"""Session event publisher for pub/sub output signals."""

import logging
from pubsub import pub

from ..models.events import AudioLevelEvent, LoudNoiseEvent, PeerEvent, SessionStateEvent

logger = logging.getLogger(__name__)

SESSION_STATE_TOPIC = "session_state"
AUDIO_LEVEL_TOPIC = "audio_level"
LOUD_NOISE_TOPIC = "loud_noise"
PEER_PRESENCE_TOPIC = "peer_presence"

TOPICS = (SESSION_STATE_TOPIC, AUDIO_LEVEL_TOPIC, LOUD_NOISE_TOPIC, PEER_PRESENCE_TOPIC)


def _event_listener_prototype(event):
    pass


def declare_topics() -> None:
    """Create every output topic with its ``event`` message signature."""
    topic_manager = pub.getDefaultTopicMgr()
    for topic in TOPICS:
        topic_manager.getOrCreateTopic(topic, _event_listener_prototype)


class SessionEventPublisher:
    """Publishes session events using pubsub.pub.

    Every message carries a single ``event`` keyword argument, so listeners
    are written as ``def listener(event): ...``.
    """

    def __init__(self):
        declare_topics()

    def publish_state(self, event: SessionStateEvent) -> None:
        pub.sendMessage(SESSION_STATE_TOPIC, event=event)
        logger.debug(f"Published state {event.previous.value} -> {event.current.value}")

    def publish_level(self, event: AudioLevelEvent) -> None:
        pub.sendMessage(AUDIO_LEVEL_TOPIC, event=event)

    def publish_alert(self, event: LoudNoiseEvent) -> None:
        """Publish a debounced loud-noise alert.

        Args:
            event: LoudNoiseEvent to publish
        """
        pub.sendMessage(LOUD_NOISE_TOPIC, event=event)
        logger.info(f"Loud noise on channel {event.channel_code} (level {event.level:.2f})")

    def publish_peer(self, event: PeerEvent) -> None:
        pub.sendMessage(PEER_PRESENCE_TOPIC, event=event)
        logger.debug(f"Published peer {'join' if event.joined else 'leave'} for uid {event.uid}")
