"""Conditional event subscriptions with explicit disposal.

Event streams deliver synchronously, in registration order, in the
order events are emitted. Every subscription is its own disposer;
subscriptions competing for the same outcome are linked through a
DisposalGroup, and everything a test installs is tracked by that
test's SubscriptionScope.

Delivery modes:
- UNTIL_MATCH: stays installed across non-matching events; a True
  predicate result consumes the event and removes the subscription.
- SINGLE_SHOT: removed before its continuation runs, on the very next
  delivery, whatever the continuation returns.
- PERSISTENT: ambient listener, removed only by disposal.
"""

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import InvariantViolation

logger = logging.getLogger(__name__)

E = TypeVar("E")

ErrorHook = Callable[[Exception], None]


class SubscriptionMode(Enum):
    UNTIL_MATCH = "until_match"
    SINGLE_SHOT = "single_shot"
    PERSISTENT = "persistent"


class Subscription(Generic[E]):
    """A predicate-gated listener on an EventStream."""

    def __init__(
        self,
        stream: "EventStream[E]",
        predicate: Callable[[E], Any],
        on_match: Callable[[E], Any] | None = None,
        mode: SubscriptionMode = SubscriptionMode.UNTIL_MATCH,
        on_error: ErrorHook | None = None,
    ):
        """Initialize a subscription. Use EventStream.subscribe to install one.

        Args:
            stream: Stream this subscription is installed on.
            predicate: Called per event. For UNTIL_MATCH a True result means
                "mine": the event is consumed. For SINGLE_SHOT and PERSISTENT
                it is simply the handler.
            on_match: Continuation run after a match, once the subscription
                and its group have been disposed.
            mode: Delivery mode.
            on_error: Called with any ordinary exception raised by the
                predicate or continuation.
        """
        self.stream = stream
        self.predicate = predicate
        self.on_match = on_match
        self.mode = mode
        self.on_error = on_error
        self.group: DisposalGroup | None = None
        self.active = True
        self.deliveries = 0
        self.matched = False

    def __repr__(self) -> str:
        state = "active" if self.active else "disposed"
        return f"<Subscription {self.stream.name} {self.mode.value} {state}>"

    def dispose(self) -> None:
        """Remove this subscription from its stream. Idempotent."""
        if not self.active:
            return
        self.active = False
        self.stream._remove(self)

    def deliver(self, event: E) -> None:
        """Deliver one event; a disposed subscription ignores it."""
        if not self.active:
            return
        self.deliveries += 1

        if self.mode is SubscriptionMode.PERSISTENT:
            self._invoke(self.predicate, event)
            return

        if self.mode is SubscriptionMode.SINGLE_SHOT:
            self._consume()
            self._invoke(self.predicate, event)
            return

        if self._invoke(self.predicate, event) is True:
            self._consume()
            if self.on_match is not None:
                self._invoke(self.on_match, event)

    def _consume(self) -> None:
        """Dispose this subscription and every member of its group."""
        self.matched = True
        self.dispose()
        if self.group is not None:
            self.group._member_matched(self)

    def _invoke(self, fn: Callable[[E], Any], event: E) -> Any:
        try:
            return fn(event)
        except InvariantViolation:
            raise
        except Exception as e:
            logger.error(
                f"Subscription on {self.stream.name} raised: {e}", exc_info=True
            )
            if self.mode is not SubscriptionMode.PERSISTENT:
                self._consume()
            if self.on_error is not None:
                self.on_error(e)
            return False


class EventStream(Generic[E]):
    """Typed, ordered event bus for a single kind of notification."""

    def __init__(self, name: str = "stream"):
        self.name = name
        self._subscriptions: list[Subscription[E]] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __repr__(self) -> str:
        return f"<EventStream {self.name} ({len(self)} subscribers)>"

    def subscribe(
        self,
        predicate: Callable[[E], Any],
        on_match: Callable[[E], Any] | None = None,
        mode: SubscriptionMode = SubscriptionMode.UNTIL_MATCH,
        on_error: ErrorHook | None = None,
    ) -> Subscription[E]:
        """Install a subscription at the end of the delivery order."""
        subscription = Subscription(self, predicate, on_match, mode, on_error)
        self._subscriptions.append(subscription)
        return subscription

    def listen(
        self, handler: Callable[[E], Any], on_error: ErrorHook | None = None
    ) -> Subscription[E]:
        """Install a persistent listener, removed only by disposal."""
        return self.subscribe(
            handler, mode=SubscriptionMode.PERSISTENT, on_error=on_error
        )

    def emit(self, event: E) -> None:
        """Deliver an event to every subscription, in registration order.

        Subscriptions disposed during this pass do not see the event.
        """
        for subscription in list(self._subscriptions):
            subscription.deliver(event)

    def _remove(self, subscription: Subscription[E]) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass


class DisposalGroup:
    """Subscriptions torn down together when any one of them matches.

    The first member to match (in delivery order) wins; every member is
    disposed before the winner's continuation runs.
    """

    def __init__(self, name: str = "group"):
        self.name = name
        self._members: list[Subscription[Any]] = []
        self.disposed = False
        self.winner: Subscription[Any] | None = None

    def __len__(self) -> int:
        return sum(1 for m in self._members if m.active)

    def add(self, subscription: Subscription[E]) -> Subscription[E]:
        """Link a subscription into this group."""
        subscription.group = self
        self._members.append(subscription)
        if self.disposed:
            subscription.dispose()
        return subscription

    def dispose(self) -> None:
        """Dispose every member. Idempotent."""
        if self.disposed:
            return
        self.disposed = True
        for member in self._members:
            member.dispose()

    def _member_matched(self, subscription: Subscription[Any]) -> None:
        if self.winner is None and not self.disposed:
            self.winner = subscription
            logger.debug(f"{self.name}: {subscription.stream.name} won")
        self.dispose()


Disposable = Subscription[Any] | DisposalGroup


class SubscriptionScope:
    """Owning context for everything one test's continuations install.

    Disposing the scope tears down all tracked subscriptions and groups;
    anything tracked afterwards is disposed on arrival.
    """

    def __init__(self, name: str = "scope"):
        self.name = name
        self._items: list[Disposable] = []
        self.closed = False

    def __len__(self) -> int:
        return len(self._items)

    def track(self, item: Disposable) -> Disposable:
        """Take ownership of a subscription or group."""
        if self.closed:
            logger.debug(f"{self.name}: scope closed, disposing {item!r}")
            item.dispose()
            return item
        if not any(existing is item for existing in self._items):
            self._items.append(item)
        return item

    def dispose(self) -> None:
        """Dispose everything tracked so far and close the scope."""
        self.closed = True
        items, self._items = self._items, []
        for item in reversed(items):
            item.dispose()


def subscribe_until(
    stream: EventStream[E],
    predicate: Callable[[E], Any],
    on_match: Callable[[E], Any] | None = None,
    *,
    scope: SubscriptionScope | None = None,
    group: DisposalGroup | None = None,
    on_error: ErrorHook | None = None,
) -> Subscription[E]:
    """Listen until predicate returns True for an event.

    Args:
        stream: Stream to listen on.
        predicate: "Is this mine?" check; may do the work itself.
        on_match: Optional continuation run after the match.
        scope: Owning scope.
        group: DisposalGroup shared with competing subscriptions.
        on_error: Hook for exceptions raised by predicate or continuation.

    Returns:
        The installed Subscription (its own disposer).
    """
    subscription = stream.subscribe(
        predicate, on_match, SubscriptionMode.UNTIL_MATCH, on_error
    )
    return _attach(subscription, scope, group)


def subscribe_once(
    stream: EventStream[E],
    continuation: Callable[[E], Any],
    *,
    scope: SubscriptionScope | None = None,
    group: DisposalGroup | None = None,
    on_error: ErrorHook | None = None,
) -> Subscription[E]:
    """Run continuation on the next event only, then remove the subscription."""
    subscription = stream.subscribe(
        continuation, mode=SubscriptionMode.SINGLE_SHOT, on_error=on_error
    )
    return _attach(subscription, scope, group)


def _attach(
    subscription: Subscription[E],
    scope: SubscriptionScope | None,
    group: DisposalGroup | None,
) -> Subscription[E]:
    if group is not None:
        group.add(subscription)
        if scope is not None:
            scope.track(group)
    if scope is not None:
        scope.track(subscription)
    return subscription


__all__ = [
    "DisposalGroup",
    "EventStream",
    "Subscription",
    "SubscriptionMode",
    "SubscriptionScope",
    "subscribe_once",
    "subscribe_until",
]
