"""Public endpoint and transfer handler protocols for pyremote.

These interfaces define the contract between the pyremote core and the
channel it runs over. They use structural typing so transports and handlers
can be implemented without inheriting from concrete base classes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

MessageListener = Callable[[Any, "list[Endpoint]"], None]


@runtime_checkable
class Endpoint(Protocol):
    """Bidirectional message channel that can carry attached sub-channels.

    Implementations are driven from a single event loop; listeners are called
    as ``listener(payload, ports)``.
    """

    def add_listener(self, listener: MessageListener) -> None:
        """Register *listener* for incoming messages."""

    def remove_listener(self, listener: MessageListener) -> None:
        """Unregister *listener*. Unknown listeners are ignored."""

    def post(self, payload: Any, ports: Sequence[Endpoint] = ()) -> None:
        """Deliver *payload* together with freshly opened sub-channels."""

    def start(self) -> None:
        """Begin delivering buffered messages. Idempotent."""

    def close(self) -> None:
        """Terminate the channel. Idempotent."""


@runtime_checkable
class TransferHandler(Protocol):
    """Customizes the encoding of values as determined by ``can_handle()``."""

    def can_handle(self, value: Any) -> bool:
        """Return True if this handler owns *value*."""

    def serialize(self, value: Any) -> tuple[Any, list[Endpoint]]:
        """Return a Sendable payload plus the sub-channels to attach."""

    def deserialize(self, value: Any, ports: list[Endpoint]) -> Any:
        """Rebuild a value from a payload produced by ``serialize()``."""
