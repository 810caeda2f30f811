"""In-process fan-out of committed project/membership changes.

Invariants:
    - Subscribers only see events published after they subscribed (no replay).
    - Per subscriber, events of one project arrive in publish (commit) order.
    - Publishing never blocks: each subscription has a bounded queue and the
      oldest undelivered event is dropped when it is full.
    - ``Subscription.close()`` is idempotent; events already queued may still
      be consumed by a handler task that is mid-dispatch.
"""

import asyncio
import inspect
import itertools
import logging
import threading
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from planshare.core.config import settings

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"
MEMBERS_TABLE = "project_members"

ChangeHandler = Callable[["ChangeEvent"], Awaitable[None] | None]


@dataclass(frozen=True)
class ChangeEvent:
    """One committed write. ``record`` is the row image after the write (before, for deletes)."""

    table: str
    kind: str  # insert | update | delete
    project_id: uuid.UUID
    record: dict[str, Any]
    sequence: int = 0

    def as_message(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "kind": self.kind,
            "project_id": str(self.project_id),
            "sequence": self.sequence,
            "record": self.record,
        }


_CLOSED = object()


@dataclass(eq=False)
class Subscription:
    """A single subscriber's view of one project's change stream."""

    bus: "ChangeBus"
    project_id: uuid.UUID
    maxsize: int
    queue: asyncio.Queue = field(init=False)
    dropped: int = field(default=0, init=False)
    closed: bool = field(default=False, init=False)
    _task: asyncio.Task | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        # One slot is kept free for the close marker.
        self.queue = asyncio.Queue(maxsize=self.maxsize + 1)

    def deliver(self, change: ChangeEvent) -> None:
        if self.closed:
            return
        if self.queue.qsize() >= self.maxsize:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                self.dropped += 1
                logger.warning(
                    "Subscriber queue full for project %s; dropped oldest event (%d dropped)",
                    self.project_id,
                    self.dropped,
                )
        self.queue.put_nowait(change)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the subscription is closed."""
        if self.closed and self.queue.empty():
            return None
        item = await self.queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item

    def close(self) -> None:
        """Release the subscription. Safe to call any number of times."""
        if self.closed:
            return
        self.closed = True
        self.bus._remove(self)
        self.queue.put_nowait(_CLOSED)
        if self._task is not None and self._task is not _current_task():
            self._task.cancel()

    unsubscribe = close

    def __call__(self) -> None:
        self.close()


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


async def _invoke(handler: ChangeHandler, change: ChangeEvent) -> None:
    result = handler(change)
    if inspect.isawaitable(result):
        await result


class ChangeBus:
    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[uuid.UUID, list[Subscription]] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)

    def subscribe(
        self,
        project_id: uuid.UUID,
        on_project_change: ChangeHandler | None = None,
        on_membership_change: ChangeHandler | None = None,
    ) -> Subscription:
        """Open a subscription scoped to one project.

        With handlers, a background task dispatches each event to the handler
        for its table; without them, iterate the returned subscription.
        Either way, call ``close()`` (or the subscription itself) to stop.
        """
        subscription = Subscription(self, project_id, self.max_queue_size)
        with self._lock:
            self._subscribers.setdefault(project_id, []).append(subscription)

        if on_project_change is not None or on_membership_change is not None:
            subscription._task = asyncio.get_running_loop().create_task(
                self._dispatch(subscription, on_project_change, on_membership_change)
            )
        logger.debug("Subscribed to project %s", project_id)
        return subscription

    async def _dispatch(
        self,
        subscription: Subscription,
        on_project_change: ChangeHandler | None,
        on_membership_change: ChangeHandler | None,
    ) -> None:
        async for change in subscription:
            handler = on_project_change if change.table == PROJECTS_TABLE else on_membership_change
            if handler is None:
                continue
            try:
                await _invoke(handler, change)
            except Exception:
                logger.exception(
                    "Change handler failed for project %s (%s %s)",
                    change.project_id,
                    change.table,
                    change.kind,
                )

    def publish(self, change: ChangeEvent) -> ChangeEvent:
        """Fan ``change`` out to the project's current subscribers without blocking."""
        if not change.sequence:
            change = ChangeEvent(
                table=change.table,
                kind=change.kind,
                project_id=change.project_id,
                record=change.record,
                sequence=next(self._sequence),
            )
        with self._lock:
            targets = tuple(self._subscribers.get(change.project_id, ()))
        for subscription in targets:
            subscription.deliver(change)
        return change

    def subscriber_count(self, project_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(project_id, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.project_id)
            if not subs:
                return
            try:
                subs.remove(subscription)
            except ValueError:
                return
            if not subs:
                del self._subscribers[subscription.project_id]


change_bus = ChangeBus(max_queue_size=settings.CHANGE_BUS_QUEUE_SIZE)
