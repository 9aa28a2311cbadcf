"""
Event Bus System for apidesk
"""

import logging
import asyncio
import itertools
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, field

logger = logging.getLogger('apidesk.core.event_bus')

DEFAULT_MAX_DEPTH = 32

class EventRecursionError(Exception):
    """Raised when nested emission of one topic exceeds the depth limit"""

    def __init__(self, topic: str, depth: int):
        self.topic = topic
        self.depth = depth
        super().__init__(f"Event '{topic}' re-emitted beyond maximum depth {depth}")

@dataclass
class Event:
    """Record of one emission, kept in the bus history"""

    topic: str
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'topic': self.topic,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat()
        }

@dataclass(eq=False)
class Subscription:
    """
    Handle returned by EventBus.subscribe().

    Subscriptions live until unsubscribe() is called; the bus never
    removes them on its own.
    """

    topic: str
    handler: Callable[[Any], Any]
    handler_id: str
    bus: Optional['EventBus'] = field(default=None, repr=False)
    once: bool = False

    @property
    def active(self) -> bool:
        return self.bus is not None and self.bus._contains(self)

    def unsubscribe(self) -> bool:
        if self.bus is None:
            return False
        return self.bus.unsubscribe(self)

class EventBus:
    """
    Process-wide publish/subscribe hub.

    Delivery is synchronous: emit() calls every handler registered for the
    topic, in subscription order, on the caller's stack. A handler that
    raises is logged and reported to the error handlers; the remaining
    handlers still run and the emitter never sees the exception.

    A handler that emits again nests directly. Nested emission of the same
    topic beyond max_depth raises EventRecursionError at the inner emit,
    which the enclosing handler wrapper isolates like any other failure.
    """

    def __init__(self, max_history: int = 1000, max_depth: int = DEFAULT_MAX_DEPTH):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._event_history: List[Event] = []
        self._max_history = max_history
        self._max_depth = max_depth
        self._depth: Dict[str, int] = {}
        self._error_handlers: List[Callable[[str, Any, Exception], Any]] = []
        self._ids = itertools.count(1)
        self._stats = {
            'events_published': 0,
            'events_handled': 0,
            'handler_errors': 0,
            'recursion_errors': 0
        }

        logger.debug("EventBus initialized")

    def subscribe(self, topic: str, handler: Callable[[Any], Any]) -> Subscription:
        """
        Subscribe a handler to a topic.

        Args:
            topic: Topic name; topics are not declared up front
            handler: Synchronous callable receiving the payload

        Returns:
            Subscription handle for later unsubscription
        """
        if not callable(handler):
            raise TypeError(f"Handler for '{topic}' must be callable")
        if asyncio.iscoroutinefunction(handler):
            raise TypeError(
                f"Handler for '{topic}' is a coroutine function; event delivery is synchronous"
            )

        handler_name = getattr(handler, '__name__', type(handler).__name__)
        subscription = Subscription(
            topic=topic,
            handler=handler,
            handler_id=f"{handler_name}_{next(self._ids)}",
            bus=self
        )
        self._subscriptions.setdefault(topic, []).append(subscription)

        logger.debug(f"Subscribed handler {subscription.handler_id} to '{topic}'")
        return subscription

    def on(self, topic: str, handler: Callable[[Any], Any]) -> Subscription:
        return self.subscribe(topic, handler)

    def once(self, topic: str, handler: Callable[[Any], Any]) -> Subscription:
        """Subscribe a handler that is removed after its first delivery"""
        subscription = self.subscribe(topic, handler)
        subscription.once = True
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if the subscription was found and removed
        """
        handlers = self._subscriptions.get(subscription.topic)
        if not handlers or subscription not in handlers:
            return False

        handlers.remove(subscription)
        if not handlers:
            del self._subscriptions[subscription.topic]

        logger.debug(f"Unsubscribed handler {subscription.handler_id} from '{subscription.topic}'")
        return True

    def off(self, topic: str, handler: Callable[[Any], Any]) -> bool:
        """Remove the first subscription of handler on topic"""
        for subscription in self._subscriptions.get(topic, []):
            if subscription.handler == handler:
                return self.unsubscribe(subscription)
        return False

    def emit(self, topic: str, payload: Any = None) -> int:
        """
        Deliver a payload to every current handler of a topic.

        Args:
            topic: Topic name
            payload: Arbitrary payload passed to each handler

        Returns:
            Number of handlers that completed without raising

        Raises:
            EventRecursionError: If this call nests deeper than max_depth
        """
        depth = self._depth.get(topic, 0)
        if depth >= self._max_depth:
            self._stats['recursion_errors'] += 1
            raise EventRecursionError(topic, self._max_depth)

        self._stats['events_published'] += 1
        self._add_to_history(Event(topic=topic, payload=payload))

        # Snapshot so handlers may (un)subscribe during delivery
        handlers = list(self._subscriptions.get(topic, ()))
        if not handlers:
            return 0

        handled_count = 0
        self._depth[topic] = depth + 1

        try:
            for subscription in handlers:
                if subscription.once:
                    if not self.unsubscribe(subscription):
                        continue
                elif not self._contains(subscription):
                    # Removed by an earlier handler of this emission
                    continue

                try:
                    subscription.handler(payload)
                    handled_count += 1
                    self._stats['events_handled'] += 1
                except Exception as e:
                    self._stats['handler_errors'] += 1
                    logger.error(f"Error in handler {subscription.handler_id} for '{topic}': {e}")
                    self._handle_error(topic, payload, e)
        finally:
            if depth:
                self._depth[topic] = depth
            else:
                self._depth.pop(topic, None)

        logger.debug(f"Published '{topic}' to {handled_count} handlers")
        return handled_count

    def publish(self, topic: str, payload: Any = None) -> int:
        return self.emit(topic, payload)

    def add_error_handler(self, error_handler: Callable[[str, Any, Exception], Any]) -> None:
        """
        Add a callback invoked as error_handler(topic, payload, error)
        whenever a subscriber raises.
        """
        self._error_handlers.append(error_handler)

    def handler_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    def topics(self) -> List[str]:
        """Topics that currently have at least one subscriber"""
        return list(self._subscriptions.keys())

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics"""
        return {
            **self._stats,
            'active_subscriptions': sum(len(h) for h in self._subscriptions.values()),
            'history_size': len(self._event_history)
        }

    def get_event_history(self, limit: Optional[int] = None) -> List[Event]:
        """
        Get recent event history.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events, oldest first
        """
        if limit:
            return self._event_history[-limit:]
        return self._event_history.copy()

    def clear_history(self) -> None:
        self._event_history.clear()

    def _contains(self, subscription: Subscription) -> bool:
        return subscription in self._subscriptions.get(subscription.topic, ())

    def _handle_error(self, topic: str, payload: Any, error: Exception) -> None:
        """Report handler errors to the registered error handlers"""
        for error_handler in self._error_handlers:
            try:
                error_handler(topic, payload, error)
            except Exception as e:
                logger.error(f"Error in error handler: {e}")

    def _add_to_history(self, event: Event) -> None:
        """Add event to history with size management"""
        if self._max_history <= 0:
            return
        self._event_history.append(event)

        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]
