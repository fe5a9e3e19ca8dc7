"""
Transport -- what the broadcaster needs from a subscriber connection.

The socket server (an external collaborator) wraps each client connection
in an object satisfying this protocol and registers it with the
RealTimeBroadcaster.  ``send`` may raise; the broadcaster treats any
exception as a dead connection.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):

    @property
    def is_open(self) -> bool:
        ...

    def send(self, message: str) -> None:
        ...

    def close(self) -> None:
        ...
