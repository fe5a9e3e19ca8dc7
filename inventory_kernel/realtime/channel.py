"""
EventChannel -- typed pub/sub between the coordinator and its subscribers.

Responsibility:
    Carries InventoryEvents from the coordinator to handlers registered per
    EventType (the RealTimeBroadcaster, or anything else in-process), and
    delivers the events of one inventory record in the commit order of the
    transactions that produced them.

Architecture position:
    Kernel > Realtime.  Imports domain/ only.  The coordinator opens one
    OutboundBatch per transaction attempt; the broadcaster subscribes a
    handler.  Neither knows about the other.

Ordering protocol:
    1. While holding a record's row lock, the coordinator calls
       ``batch.claim(inventory_id)`` and receives the next ticket for that
       record.  Ticket order therefore equals lock order, which equals
       commit order.
    2. Events are staged on the batch during the transaction.
    3. After commit, ``batch.release()`` marks the ticket ready.  After
       rollback, ``batch.discard()`` marks it ready with no events.
    4. Ready tickets are delivered strictly in ticket order per record; a
       ticket released early waits for every lower ticket.

Invariants enforced:
    ORDERED_DELIVERY -- per-record delivery order equals commit order
        within this process.  There is no ordering across records.

Failure modes:
    - A handler that raises is logged (``event_handler_failed``) and skipped;
      the exception never reaches the publisher.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable, Iterable
from uuid import UUID

from inventory_kernel.domain.events import ALL_EVENT_TYPES, EventType, InventoryEvent
from inventory_kernel.logging_config import get_logger

logger = get_logger("realtime.channel")

EventHandler = Callable[[InventoryEvent], None]


class EventChannel:
    """
    In-process typed pub/sub with per-record ordered delivery.

    Contract:
        Handlers are invoked synchronously, one event at a time, under the
        channel lock.  A handler must not block for long.

    Guarantees:
        - A handler only receives events of the types it subscribed to.
        - Events for one inventory id are delivered in ticket order.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._handlers: dict[EventType, list[EventHandler]] = {t: [] for t in EventType}
        self._next_ticket: dict[UUID, int] = defaultdict(int)
        self._next_delivery: dict[UUID, int] = defaultdict(int)
        self._ready: dict[UUID, dict[int, list[InventoryEvent]]] = defaultdict(dict)

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[EventType | str] = ALL_EVENT_TYPES,
    ) -> None:
        with self._lock:
            for event_type in event_types:
                handlers = self._handlers[EventType(event_type)]
                if handler not in handlers:
                    handlers.append(handler)

    def unsubscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[EventType | str] = ALL_EVENT_TYPES,
    ) -> None:
        with self._lock:
            for event_type in event_types:
                handlers = self._handlers[EventType(event_type)]
                if handler in handlers:
                    handlers.remove(handler)

    def handler_count(self, event_type: EventType | str) -> int:
        with self._lock:
            return len(self._handlers[EventType(event_type)])

    # -------------------------------------------------------------------------
    # Publication
    # -------------------------------------------------------------------------

    def open_batch(self) -> OutboundBatch:
        return OutboundBatch(self)

    def publish(self, event: InventoryEvent) -> None:
        """Publish a single event outside any transaction, in ticket order."""
        batch = self.open_batch()
        batch.claim(event.inventory_id)
        batch.stage(event)
        batch.release()

    @property
    def pending_tickets(self) -> int:
        """Tickets claimed but not yet delivered, across all records."""
        with self._lock:
            return sum(
                self._next_ticket[key] - self._next_delivery[key]
                for key in list(self._next_ticket)
            )

    def _claim(self, inventory_id: UUID) -> int:
        with self._lock:
            ticket = self._next_ticket[inventory_id]
            self._next_ticket[inventory_id] = ticket + 1
            return ticket

    def _complete(self, inventory_id: UUID, ticket: int, events: list[InventoryEvent]) -> None:
        with self._lock:
            self._ready[inventory_id][ticket] = events
            ready = self._ready[inventory_id]
            while self._next_delivery[inventory_id] in ready:
                batch_events = ready.pop(self._next_delivery[inventory_id])
                self._next_delivery[inventory_id] += 1
                for event in batch_events:
                    self._dispatch(event)
            if self._next_delivery[inventory_id] == self._next_ticket[inventory_id] and not ready:
                # Fully drained; forget the record
                del self._ready[inventory_id]
                del self._next_ticket[inventory_id]
                del self._next_delivery[inventory_id]

    def _dispatch(self, event: InventoryEvent) -> None:
        for handler in list(self._handlers[event.type]):
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event.type.value,
                        "event_inventory_id": str(event.inventory_id),
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )


class OutboundBatch:
    """
    Events staged by one transaction attempt.

    Contract:
        ``claim`` a record before staging its events, while its row lock is
        held.  Finish with exactly one of ``release`` (after commit) or
        ``discard`` (after rollback).
    """

    def __init__(self, channel: EventChannel):
        self._channel = channel
        self._tickets: dict[UUID, int] = {}
        self._events: dict[UUID, list[InventoryEvent]] = defaultdict(list)
        self._finished = False

    def claim(self, inventory_id: UUID) -> int:
        """Ticket for ``inventory_id``; repeated claims return the same ticket."""
        if inventory_id not in self._tickets:
            self._tickets[inventory_id] = self._channel._claim(inventory_id)
        return self._tickets[inventory_id]

    def stage(self, event: InventoryEvent) -> None:
        if self._finished:
            raise RuntimeError("Cannot stage on a released or discarded batch")
        if event.inventory_id not in self._tickets:
            raise RuntimeError(f"Inventory {event.inventory_id} not claimed on this batch")
        self._events[event.inventory_id].append(event)

    @property
    def staged(self) -> list[InventoryEvent]:
        return [event for events in self._events.values() for event in events]

    def release(self) -> None:
        self._finish(deliver=True)

    def discard(self) -> None:
        self._finish(deliver=False)

    def _finish(self, deliver: bool) -> None:
        if self._finished:
            return
        self._finished = True
        for inventory_id, ticket in self._tickets.items():
            events = self._events.get(inventory_id, []) if deliver else []
            self._channel._complete(inventory_id, ticket, list(events))
        if not deliver and self._events:
            logger.debug(
                "event_batch_discarded",
                extra={"discarded_events": sum(len(e) for e in self._events.values())},
            )
