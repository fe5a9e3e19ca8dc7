"""Real-time fan-out: the typed event channel and the connection registry."""

from inventory_kernel.realtime.broadcaster import RealTimeBroadcaster
from inventory_kernel.realtime.channel import EventChannel, OutboundBatch
from inventory_kernel.realtime.transport import Transport

__all__ = ["EventChannel", "OutboundBatch", "RealTimeBroadcaster", "Transport"]
