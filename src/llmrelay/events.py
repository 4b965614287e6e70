"""
Named publish/subscribe bus for request lifecycle notifications.

Firing is fire-and-forget: subscribers run synchronously on the caller's
loop, their return values are discarded, and an exception raised by one
subscriber is logged without reaching the firer or the other subscribers.
Coroutine subscribers are scheduled as tasks on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
import typing as t

import structlog

log = structlog.get_logger(__name__)

Subscriber = t.Callable[[str, t.Any], t.Any]

# Subscribe under this name to receive every event.
ALL_EVENTS = "*"


class EventBus:
    """
    Event dispatcher shared by concurrent requests.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._tasks: set[asyncio.Task[t.Any]] = set()

    def subscribe(self, event: str, subscriber: Subscriber) -> t.Callable[[], None]:
        """
        Register a subscriber for an event name.

        Parameters
        ----------
        event : str
            Exact event name, or ``"*"`` for every event.
        subscriber : Subscriber
            Called as ``subscriber(event_name, data)``.

        Returns
        -------
        typing.Callable[[], None]
            Function removing the subscription.
        """
        self._subscribers.setdefault(event, []).append(subscriber)

        def unsubscribe() -> None:
            self.unsubscribe(event, subscriber)

        return unsubscribe

    def unsubscribe(self, event: str, subscriber: Subscriber) -> None:
        subscribers = self._subscribers.get(event, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)
        if not subscribers:
            self._subscribers.pop(event, None)

    def fire(self, event: str, data: t.Any = None) -> None:
        """
        Deliver an event to its subscribers.

        Parameters
        ----------
        event : str
            Event name.
        data : typing.Any, optional
            Event payload.
        """
        subscribers = [
            *self._subscribers.get(event, []),
            *self._subscribers.get(ALL_EVENTS, []),
        ]
        log.debug(event="Firing event", name=event, subscriber_count=len(subscribers))
        for subscriber in subscribers:
            try:
                result = subscriber(event, data)
                if inspect.isawaitable(result):
                    self._schedule(event=event, awaitable=result)
            except Exception as e:
                log.error(
                    event="Event subscriber failed",
                    name=event,
                    subscriber=getattr(subscriber, "__qualname__", repr(subscriber)),
                    error=str(object=e),
                )

    def _schedule(self, *, event: str, awaitable: t.Awaitable[t.Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(finished: asyncio.Future[t.Any]) -> None:
            self._tasks.discard(t.cast(asyncio.Task[t.Any], finished))
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                log.error(
                    event="Async event subscriber failed",
                    name=event,
                    error=str(object=error),
                )

        task.add_done_callback(_done)


default_bus = EventBus()
