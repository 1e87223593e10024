"""
Change notifications for weekly cycles.

Notifications only say "this cycle changed"; consumers re-fetch the row.
``wait_for_cycle`` pairs the push trigger with a timed poll so a missed
notification costs at most one poll interval. Both triggers run the same
re-check.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from ritual.status import cycle_snapshot

logger = logging.getLogger(__name__)

Callback = Callable[[str, str], None]


class Subscription:
    """Handle returned by CycleChannel.subscribe"""

    def __init__(self, channel: "CycleChannel", cycle_id: str, callback: Callback):
        self._channel = channel
        self.cycle_id = cycle_id
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Safe to call any number of times"""
        if not self._active:
            return
        self._active = False
        self._channel._remove(self)


class CycleChannel:
    """In-process fan-out of cycle change events, keyed by cycle id"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, cycle_id: str, on_update: Callback) -> Subscription:
        subscription = Subscription(self, cycle_id, on_update)
        with self._lock:
            self._subscribers.setdefault(cycle_id, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.cycle_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.cycle_id, None)

    def subscriber_count(self, cycle_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(cycle_id, []))

    def publish(self, cycle_id: str, event: str) -> int:
        """Deliver ``event`` to every subscriber of ``cycle_id``; returns deliveries"""
        with self._lock:
            subscribers = list(self._subscribers.get(cycle_id, []))

        delivered = 0
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.callback(cycle_id, event)
                delivered += 1
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception("Subscriber for cycle %s failed on %s", cycle_id, event)
        logger.debug("Published %s for cycle %s to %d subscribers", event, cycle_id, delivered)
        return delivered


CHANNEL = CycleChannel()


def wait_for_cycle(
    ctx,
    cycle_id: str,
    condition: Callable,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
):
    """
    Block until ``condition(snapshot)`` holds or the cycle reaches a terminal state.

    Returns the last snapshot seen, which may not satisfy ``condition`` when
    ``timeout`` ran out. Polling stops as soon as this returns.
    """
    interval = poll_interval if poll_interval is not None else ctx.settings.poll_interval_seconds
    deadline = time.monotonic() + timeout if timeout is not None else None
    wake = threading.Event()
    subscription = None

    try:
        subscription = ctx.channel.subscribe(cycle_id, lambda _cycle_id, _event: wake.set())
        while True:
            wake.clear()
            snapshot = cycle_snapshot(ctx, cycle_id)
            if condition(snapshot) or snapshot.status.is_terminal:
                return snapshot

            wait_for = interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.info("Gave up waiting on cycle %s in status %s", cycle_id, snapshot.status.value)
                    return snapshot
                wait_for = min(interval, remaining)
            wake.wait(wait_for)
    finally:
        if subscription is not None:
            subscription.unsubscribe()
