"""
Notification streams.

A Signal is a synchronous, in-process broadcast: `emit` calls every
subscriber in subscription order. Subscribers own nothing; whoever
subscribes keeps the returned Subscription and releases it.

A failing subscriber is logged and skipped so that one broken consumer
cannot stall replication.
"""

from typing import Callable, Generic, TypeVar

from budgetcalm.audit import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class Subscription:
    """Handle returned by Signal.subscribe."""

    def __init__(self, signal: "Signal", callback: Callable):
        self._signal = signal
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._signal._discard(self)
            self._active = False


class Signal(Generic[T]):
    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[Subscription] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def emit(self, value: T) -> None:
        for subscription in list(self._subscriptions):
            try:
                subscription._callback(value)
            except Exception:
                logger.exception("signal_subscriber_failed", signal=self.name)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
