"""
Realtime Broadcast Hub.

Per-vehicle publish/subscribe topics for live position events.

Supports:
- Subscribe with synchronous catch-up (snapshot, recent history, state)
- Non-blocking publish into bounded per-subscriber queues
- Per-subscriber sender tasks so a slow or dead observer never delays
  the publisher or the other observers
- Reaping every subscription of a connection when it closes
- Telling a dropped observer it was dropped, so it can re-join

Purely in-memory: durability is the PositionStore's job.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
CatchupLoader = Callable[[int], Awaitable[List[Message]]]

SLOW_CONSUMER = "slow_consumer"
SEND_FAILED = "send_failed"


class Observer(Protocol):
    """Anything that can receive JSON-able messages (e.g. a WebSocket wrapper)."""

    observer_id: str

    async def send(self, message: Message) -> None:
        ...


@dataclass(eq=False)
class Subscription:
    """One observer's membership in one vehicle topic."""
    vehicle_id: int
    observer: Observer
    queue: asyncio.Queue
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    task: Optional[asyncio.Task] = None
    active: bool = True
    drop_reason: Optional[str] = None

    @property
    def observer_id(self) -> str:
        return self.observer.observer_id


DropCallback = Callable[[Subscription, str], Awaitable[None]]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # no running event loop
        return None


async def send_drop_notice(subscription: Subscription, reason: str) -> None:
    """Tell an observer the hub stopped delivering a vehicle topic to it."""
    await subscription.observer.send({
        "event": "subscription_dropped",
        "data": {"vehicleId": str(subscription.vehicle_id), "reason": reason},
    })


class RealtimeBroadcastHub:
    """
    Topic registry keyed by vehicle id.

    Args:
        catchup_loader: coroutine producing the catch-up messages for a vehicle
        queue_size: pending messages per subscriber before it is dropped
        on_drop: awaited with (subscription, reason) once a live subscriber has
            been dropped and its sender task finished the in-flight send
    """

    def __init__(
        self,
        catchup_loader: CatchupLoader,
        queue_size: int = 64,
        on_drop: Optional[DropCallback] = None,
    ):
        self._load_catchup = catchup_loader
        self._queue_size = queue_size
        self._on_drop = on_drop

        # vehicle_id -> subscription_id -> Subscription (receiving publishes)
        self._topics: Dict[int, Dict[str, Subscription]] = {}

        # observer_id -> subscription_id -> Subscription (until its sender stops)
        self._by_observer: Dict[str, Dict[str, Subscription]] = {}

        self._total_published = 0
        self._total_dropped = 0

    async def subscribe(self, vehicle_id: int, observer: Observer) -> Subscription:
        """
        Add observer to the vehicle topic.

        The subscription is registered before the catch-up is read, so events
        published meanwhile are queued and delivered right after the catch-up.
        Returns once the catch-up has been sent. If the queue overflowed during
        the catch-up the returned subscription is inactive with drop_reason set.
        """
        existing = self._find(vehicle_id, observer.observer_id)
        if existing is not None:
            self.unsubscribe(existing)

        subscription = Subscription(
            vehicle_id=vehicle_id,
            observer=observer,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._topics.setdefault(vehicle_id, {})[subscription.id] = subscription
        self._by_observer.setdefault(observer.observer_id, {})[subscription.id] = subscription

        try:
            messages = await self._load_catchup(vehicle_id)
            for message in messages:
                await observer.send(message)
        except BaseException:
            self.unsubscribe(subscription)
            raise

        if not subscription.active:
            self._forget(subscription)
            return subscription

        subscription.task = asyncio.create_task(self._pump(subscription))
        logger.debug("Observer %s subscribed to vehicle %s", observer.observer_id, vehicle_id)
        return subscription

    def publish(self, vehicle_id: int, message: Message, exclude_observer: Optional[str] = None) -> int:
        """
        Queue message for every subscriber of the vehicle.

        Never awaits. A subscriber whose queue is full is dropped.

        Returns:
            Number of subscribers the message was queued for
        """
        topic = self._topics.get(vehicle_id)
        if not topic:
            return 0

        queued = 0
        for subscription in list(topic.values()):
            if exclude_observer is not None and subscription.observer_id == exclude_observer:
                continue
            try:
                subscription.queue.put_nowait(message)
                queued += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping slow observer %s on vehicle %s (queue full)",
                    subscription.observer_id, vehicle_id
                )
                self._drop(subscription, SLOW_CONSUMER)

        self._total_published += 1
        return queued

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription and stop its sender. Removing it twice is a no-op."""
        self._detach(subscription)
        self._forget(subscription)

        current = _current_task()
        task = subscription.task
        if task is not None and task is not current and not task.done():
            task.cancel()

    def unsubscribe_vehicle(self, vehicle_id: int, observer_id: str) -> bool:
        """Leave one vehicle topic. Returns False if the observer was not in it."""
        subscription = self._find(vehicle_id, observer_id)
        if subscription is None:
            return False
        was_active = subscription.active
        self.unsubscribe(subscription)
        return was_active

    def drop_observer(self, observer_id: str) -> int:
        """Reap every subscription of a closed connection."""
        owned = self._by_observer.get(observer_id)
        if not owned:
            return 0
        subscriptions = list(owned.values())
        for subscription in subscriptions:
            self.unsubscribe(subscription)
        return len(subscriptions)

    async def close(self) -> None:
        """Cancel all sender tasks (application shutdown)."""
        tasks = []
        for owned in list(self._by_observer.values()):
            for subscription in list(owned.values()):
                if subscription.task is not None:
                    tasks.append(subscription.task)
                self.unsubscribe(subscription)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def subscriber_count(self, vehicle_id: int) -> int:
        return len(self._topics.get(vehicle_id, {}))

    def observer_vehicles(self, observer_id: str) -> List[int]:
        return sorted({
            s.vehicle_id for s in self._by_observer.get(observer_id, {}).values() if s.active
        })

    def get_stats(self) -> Dict[str, int]:
        return {
            "topics": len(self._topics),
            "subscriptions": sum(len(t) for t in self._topics.values()),
            "observers": len(self._by_observer),
            "total_published": self._total_published,
            "total_dropped": self._total_dropped,
        }

    def _find(self, vehicle_id: int, observer_id: str) -> Optional[Subscription]:
        for subscription in self._by_observer.get(observer_id, {}).values():
            if subscription.vehicle_id == vehicle_id:
                return subscription
        return None

    def _drop(self, subscription: Subscription, reason: str) -> None:
        """Stop publishing to a subscriber the hub gave up on; its sender finishes the current send."""
        if not subscription.active:
            return
        subscription.drop_reason = reason
        self._total_dropped += 1
        self._detach(subscription)

    def _detach(self, subscription: Subscription) -> None:
        subscription.active = False
        topic = self._topics.get(subscription.vehicle_id)
        if topic is not None:
            topic.pop(subscription.id, None)
            if not topic:
                del self._topics[subscription.vehicle_id]

    def _forget(self, subscription: Subscription) -> None:
        owned = self._by_observer.get(subscription.observer_id)
        if owned is not None:
            owned.pop(subscription.id, None)
            if not owned:
                del self._by_observer[subscription.observer_id]

    async def _pump(self, subscription: Subscription) -> None:
        """
        Deliver queued messages in order.

        A dropped subscription stops after the in-flight send; a failed send
        drops only this subscriber. Either way on_drop is awaited last.
        """
        try:
            while subscription.active:
                message = await subscription.queue.get()
                await subscription.observer.send(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(
                "Send to observer %s failed (%s), dropping subscription on vehicle %s",
                subscription.observer_id, type(e).__name__, subscription.vehicle_id
            )
            self._drop(subscription, SEND_FAILED)

        self._forget(subscription)
        if subscription.drop_reason is None or self._on_drop is None:
            return
        try:
            await self._on_drop(subscription, subscription.drop_reason)
        except Exception as e:
            logger.info(
                "Drop notice to observer %s failed (%s)",
                subscription.observer_id, type(e).__name__
            )
