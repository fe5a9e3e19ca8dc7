"""
RealTimeBroadcaster -- connection registry and filtered fan-out.

Responsibility:
    Keeps connection_id -> {transport, subscribed event types} and sends each
    event it receives from the EventChannel to the connections subscribed to
    that event's type.

Architecture position:
    Kernel > Realtime.  Constructed once per process, started, handed by
    reference to the socket layer, and shut down on exit.  It learns about
    events only through the EventChannel, never from the coordinator
    directly.

Invariants enforced:
    - A connection only ever receives event types in its subscription set.
    - Registry mutation and fan-out run under one mutex (single writer), so
      subscribe/unsubscribe/publish never interleave.

Failure modes:
    - A transport that is closed or raises on send is pruned and logged
      (``connection_pruned``).  Delivery to other connections continues and
      nothing propagates to the publisher.
    - Connections idle longer than ``broadcast.idle_timeout_s`` are pruned
      when the socket layer calls ``prune_idle``.
    - ConnectionNotFoundError for (un)subscribe on an unknown connection.
    - ValidationError for unknown event types or malformed client messages.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from inventory_kernel.config import BroadcastSettings
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.events import ALL_EVENT_TYPES, EventType, InventoryEvent
from inventory_kernel.exceptions import ConnectionNotFoundError, ValidationError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.realtime.channel import EventChannel
from inventory_kernel.realtime.transport import Transport

logger = get_logger("realtime.broadcaster")

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"
PING = "ping"


class _WireEncoder(json.JSONEncoder):
    """Handle UUID, datetime and Decimal in event payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


def encode_event(event: InventoryEvent) -> str:
    return json.dumps(event.to_payload(), cls=_WireEncoder)


def parse_event_types(event_types: Iterable[EventType | str]) -> frozenset[EventType]:
    """Validate a client-supplied list of event type names."""
    if isinstance(event_types, (str, EventType)):
        event_types = [event_types]
    parsed = set()
    for name in event_types:
        try:
            parsed.add(EventType(name))
        except ValueError:
            raise ValidationError(
                "event_types",
                f"unknown event type {name!r}; expected one of "
                f"{sorted(t.value for t in EventType)}",
            ) from None
    return frozenset(parsed)


@dataclass
class Subscription:
    connection_id: str
    transport: Transport
    connected_at: datetime
    last_activity: datetime
    event_types: set[EventType] = field(default_factory=set)
    is_active: bool = True


@dataclass(frozen=True)
class ConnectionStats:
    total_connections: int
    connections: tuple[dict[str, Any], ...]
    is_listening: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalConnections": self.total_connections,
            "connectionsDetail": list(self.connections),
            "isListening": self.is_listening,
        }


class RealTimeBroadcaster:
    """
    Process-scoped connection registry with an explicit lifecycle.

    Contract:
        ``start()`` attaches to the EventChannel; ``shutdown()`` detaches and
        closes every registered transport.  Registration works before
        ``start()``, but nothing is delivered until then.

    Guarantees:
        - subscribe/unsubscribe are idempotent set operations.
        - publish never raises because of a transport.
    """

    def __init__(
        self,
        channel: EventChannel,
        clock: Clock | None = None,
        settings: BroadcastSettings | None = None,
    ):
        self._channel = channel
        self._clock = clock or SystemClock()
        self._idle_timeout_s = (settings or BroadcastSettings()).idle_timeout_s
        self._lock = threading.RLock()
        self._connections: dict[str, Subscription] = {}
        self._running = False
        self._delivered = 0
        self._pruned = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        # Never under self._lock: dispatch holds the channel lock while calling publish
        self._channel.subscribe(self.publish, ALL_EVENT_TYPES)
        logger.info("broadcaster_started")

    def shutdown(self) -> None:
        with self._lock:
            was_running = self._running
            self._running = False
            connections = list(self._connections.values())
            self._connections.clear()
        if was_running:
            self._channel.unsubscribe(self.publish, ALL_EVENT_TYPES)
        for subscription in connections:
            self._close_quietly(subscription, reason="shutdown")
        logger.info("broadcaster_stopped", extra={"closed_connections": len(connections)})

    def __enter__(self) -> RealTimeBroadcaster:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register(
        self,
        connection_id: str,
        transport: Transport,
        event_types: Iterable[EventType | str] = (),
    ) -> frozenset[EventType]:
        """Add a connection, optionally with an initial subscription set."""
        if not connection_id:
            raise ValidationError("connection_id", "must be a non-empty string")
        types = parse_event_types(event_types)
        now = self._clock.now()
        with self._lock:
            if connection_id in self._connections:
                raise ValidationError("connection_id", f"{connection_id} is already registered")
            self._connections[connection_id] = Subscription(
                connection_id=connection_id,
                transport=transport,
                connected_at=now,
                last_activity=now,
                event_types=set(types),
            )
        with LogContext.bind(connection_id=connection_id):
            logger.info(
                "connection_registered",
                extra={"event_types": sorted(t.value for t in types)},
            )
        return types

    def disconnect(self, connection_id: str) -> bool:
        """Remove and close a connection.  Returns False if it was unknown."""
        with self._lock:
            subscription = self._connections.pop(connection_id, None)
        if subscription is None:
            return False
        self._close_quietly(subscription, reason="disconnect")
        with LogContext.bind(connection_id=connection_id):
            logger.info("connection_removed")
        return True

    def subscribe(self, connection_id: str, event_types: Iterable[EventType | str]) -> frozenset[EventType]:
        """Add event types to a connection's set.  Returns the resulting set."""
        types = parse_event_types(event_types)
        with self._lock:
            subscription = self._require(connection_id)
            subscription.event_types |= types
            current = frozenset(subscription.event_types)
        logger.debug(
            "subscriptions_updated",
            extra={"connection_id": connection_id, "event_types": sorted(t.value for t in current)},
        )
        return current

    def unsubscribe(self, connection_id: str, event_types: Iterable[EventType | str]) -> frozenset[EventType]:
        """Remove event types from a connection's set.  Returns the resulting set."""
        types = parse_event_types(event_types)
        with self._lock:
            subscription = self._require(connection_id)
            subscription.event_types -= types
            current = frozenset(subscription.event_types)
        logger.debug(
            "subscriptions_updated",
            extra={"connection_id": connection_id, "event_types": sorted(t.value for t in current)},
        )
        return current

    def subscriptions(self, connection_id: str) -> frozenset[EventType]:
        with self._lock:
            return frozenset(self._require(connection_id).event_types)

    def handle_message(self, connection_id: str, raw: str | bytes) -> frozenset[EventType]:
        """
        Apply a client control frame.

        Accepts ``{"action": "subscribe" | "unsubscribe", "events": [...]}``
        and ``{"action": "ping"}``.  Any well-formed frame counts as activity
        for ``prune_idle``.

        Returns:
            The connection's subscription set after the frame was applied.

        Raises:
            ValidationError: malformed JSON, unknown action or event type.
            ConnectionNotFoundError: the connection is not registered.
        """
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("client_message_rejected", extra={"reason": "invalid_json"})
            raise ValidationError("message", f"not valid JSON: {exc}") from exc
        if not isinstance(message, dict):
            raise ValidationError("message", "expected a JSON object")

        action = message.get("action")
        events = message.get("events") or []
        if not isinstance(events, list):
            raise ValidationError("events", "expected a list of event type names")
        if action == SUBSCRIBE:
            current = self.subscribe(connection_id, events)
        elif action == UNSUBSCRIBE:
            current = self.unsubscribe(connection_id, events)
        elif action == PING:
            current = self.subscriptions(connection_id)
        else:
            logger.warning(
                "client_message_rejected", extra={"reason": "unknown_action", "action": action}
            )
            raise ValidationError(
                "action", f"expected 'subscribe', 'unsubscribe' or 'ping', got {action!r}"
            )
        self.touch(connection_id)
        return current

    def touch(self, connection_id: str) -> None:
        """Record client activity on a connection."""
        now = self._clock.now()
        with self._lock:
            self._require(connection_id).last_activity = now

    def prune_idle(self) -> list[str]:
        """
        Close connections with no client activity for longer than the idle
        timeout.  Meant to be called periodically by the socket layer.

        Returns:
            The ids of the connections that were pruned.
        """
        now = self._clock.now()
        pruned = []
        with self._lock:
            for connection_id, subscription in list(self._connections.items()):
                idle_s = (now - subscription.last_activity).total_seconds()
                if idle_s > self._idle_timeout_s:
                    self._prune(connection_id, subscription, reason="idle")
                    pruned.append(connection_id)
        return pruned

    def _require(self, connection_id: str) -> Subscription:
        subscription = self._connections.get(connection_id)
        if subscription is None:
            raise ConnectionNotFoundError(connection_id)
        return subscription

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def publish(self, event: InventoryEvent) -> int:
        """
        Send ``event`` to every connection subscribed to its type.

        Returns:
            Number of connections the event was delivered to.
        """
        message = encode_event(event)
        delivered = 0
        with self._lock:
            for connection_id, subscription in list(self._connections.items()):
                if event.type not in subscription.event_types:
                    continue
                if not subscription.transport.is_open:
                    self._prune(connection_id, subscription, reason="transport_closed")
                    continue
                try:
                    subscription.transport.send(message)
                except Exception:
                    logger.warning(
                        "connection_send_failed",
                        extra={"connection_id": connection_id, "event_type": event.type.value},
                        exc_info=True,
                    )
                    self._prune(connection_id, subscription, reason="send_failed")
                    continue
                delivered += 1
            self._delivered += delivered
        return delivered

    def _prune(self, connection_id: str, subscription: Subscription, reason: str) -> None:
        self._connections.pop(connection_id, None)
        subscription.is_active = False
        self._pruned += 1
        self._close_quietly(subscription, reason=reason)
        logger.warning("connection_pruned", extra={"connection_id": connection_id, "reason": reason})

    def _close_quietly(self, subscription: Subscription, reason: str) -> None:
        subscription.is_active = False
        try:
            subscription.transport.close()
        except Exception:
            # Already dead; closing is best-effort
            logger.debug(
                "connection_close_failed",
                extra={"connection_id": subscription.connection_id, "reason": reason},
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_connection_stats(self) -> ConnectionStats:
        with self._lock:
            details = tuple(
                {
                    "id": sub.connection_id,
                    "subscriptions": sorted(t.value for t in sub.event_types),
                    "connectedAt": sub.connected_at.isoformat(),
                    "lastActivity": sub.last_activity.isoformat(),
                    "isActive": sub.is_active and sub.transport.is_open,
                }
                for sub in self._connections.values()
            )
            return ConnectionStats(
                total_connections=len(self._connections),
                connections=details,
                is_listening=self._running,
            )

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def pruned_count(self) -> int:
        return self._pruned
