import logging
import queue
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Tuple

from shared.events import Event

logger = logging.getLogger(__name__)

Scope = Tuple[int, ...]


def scope_for(tournament_id: int, match_id: int = None) -> Scope:
    if match_id is None:
        return (tournament_id,)
    return (tournament_id, match_id)


class Subscription:
    """One live viewer. Events are buffered in a bounded queue."""

    def __init__(self, scope: Scope, subscriber_id: str, queue_size: int):
        self.scope = scope
        self.subscriber_id = subscriber_id
        self.queue = queue.Queue(maxsize=queue_size)
        self.closed = False
        self.dropped = 0

    def offer(self, event: Event) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: float = None) -> Optional[Event]:
        """Next event, or None on timeout or once the subscription is closed."""
        if self.closed:
            return None
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True


class BroadcastHub:
    """
    In-process fan-out of live events.

    Subscriptions are keyed by ``(tournament_id,)`` or
    ``(tournament_id, match_id)``. A tournament subscription sees every event
    of its tournament; a match subscription only the events of its match.
    Delivery is best effort and never blocks the publisher: a full queue
    drops the event for that subscriber only.

    An optional relay (``shared.pubsub.PubSubClient``) mirrors every event
    to redis on a single background worker. At most ``relay_backlog`` events
    wait for the relay; further events skip it.
    """

    def __init__(self, queue_size: int = 100, relay=None, relay_backlog: int = 1000):
        self.queue_size = queue_size
        self.relay = relay
        self.relay_dropped = 0
        self._relay_slots = threading.BoundedSemaphore(relay_backlog)
        self._subscriptions: Dict[Scope, Dict[str, Subscription]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1) if relay is not None else None

    def subscribe(self, tournament_id: int, match_id: int = None, subscriber_id: str = None) -> Subscription:
        scope = scope_for(tournament_id, match_id)
        subscriber_id = subscriber_id or uuid.uuid4().hex

        with self._lock:
            subs = self._subscriptions.setdefault(scope, {})
            existing = subs.get(subscriber_id)
            if existing is not None and not existing.closed:
                return existing
            sub = Subscription(scope, subscriber_id, self.queue_size)
            subs[subscriber_id] = sub

        logger.debug(f"Subscriber {subscriber_id} joined {scope}")
        return sub

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            subs = self._subscriptions.get(subscription.scope)
            if subs and subs.get(subscription.subscriber_id) is subscription:
                del subs[subscription.subscriber_id]
                if not subs:
                    del self._subscriptions[subscription.scope]
        subscription.close()

    def subscriber_count(self, tournament_id: int, match_id: int = None) -> int:
        with self._lock:
            return len(self._subscriptions.get(scope_for(tournament_id, match_id), {}))

    def publish(self, event: Event) -> int:
        """Deliver ``event`` to every matching subscription.

        Returns:
            Number of subscriptions the event was queued for
        """
        scopes = [scope_for(event.tournament_id)]
        if event.match_id is not None:
            scopes.append(scope_for(event.tournament_id, event.match_id))

        with self._lock:
            targets = [
                sub
                for scope in scopes
                for sub in self._subscriptions.get(scope, {}).values()
            ]

        delivered = 0
        for sub in targets:
            if sub.offer(event):
                delivered += 1
            elif not sub.closed:
                logger.warning(
                    f"Dropped {event.to_dict()['type']} for subscriber {sub.subscriber_id}: queue full"
                )

        if self._executor is not None:
            if self._relay_slots.acquire(blocking=False):
                self._executor.submit(self._relay, event)
            else:
                with self._lock:
                    self.relay_dropped += 1
                logger.warning(f"Dropped {event.to_dict()['type']} for redis relay: backlog full")

        return delivered

    def _relay(self, event: Event):
        try:
            self.relay.publish_event(event)
        except Exception:
            logger.exception("Failed to relay event to redis")
        finally:
            self._relay_slots.release()

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
