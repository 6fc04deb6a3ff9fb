import asyncio
import itertools
import logging

from rover_relay.messages import TelemetryEvent

logger = logging.getLogger(__name__)


class Subscription:
    """Observer handle: a bounded queue of pending telemetry events."""

    def __init__(self, subscription_id: int, queue_size: int) -> None:
        self.id = subscription_id
        self.dropped = 0
        self._queue: asyncio.Queue[TelemetryEvent] = asyncio.Queue(maxsize=queue_size)

    def offer(self, event: TelemetryEvent) -> None:
        # A full queue means the observer is not keeping up: drop its oldest event.
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Observer {self.id} is lagging, {self.dropped} events dropped")
        self._queue.put_nowait(event)

    async def get(self) -> TelemetryEvent:
        return await self._queue.get()

    def get_nowait(self) -> TelemetryEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()


class TelemetryHub:
    """
    In-process broadcaster for telemetry events.

    publish() never waits on an observer: each observer has its own bounded
    queue and a sender that drains it with a per-send timeout.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: TelemetryEvent) -> None:
        for subscription in list(self._subscribers.values()):
            subscription.offer(event)

    def subscribe(self) -> Subscription:
        subscription = Subscription(next(self._ids), self._queue_size)
        self._subscribers[subscription.id] = subscription
        subscription.offer(TelemetryEvent.system("Client connected to telemetry channel."))
        logger.info(f"Observer {subscription.id} subscribed ({len(self._subscribers)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscribers.pop(subscription.id, None) is None:
            return
        logger.info(f"Observer {subscription.id} unsubscribed ({len(self._subscribers)} left)")
        self.publish(TelemetryEvent.system("A client disconnected from the telemetry channel."))
