import os
import logging
import redis

from .events import Event

logger = logging.getLogger(__name__)


def tournament_channel(tournament_id) -> str:
    return f"tournament:{tournament_id}:events"


def match_channel(match_id) -> str:
    return f"match:{match_id}:events"


class PubSubClient:
    """Forwards live events to redis pub/sub for consumers in other processes.

    Outbound only: the in-process broadcast hub does its own fan-out, this
    client just mirrors every event onto the tournament channel and, for
    match-scoped events, the match channel.
    """

    def __init__(self, redis_url: str = None, client: redis.Redis = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def publish(self, channel: str, event: Event) -> int:
        return self.redis.publish(channel, event.to_json())

    def publish_event(self, event: Event):
        self.publish(tournament_channel(event.tournament_id), event)
        if event.match_id is not None:
            self.publish(match_channel(event.match_id), event)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
