"""Transfer handler registry and the wire value codec.

Values outside the Sendable universe are encoded by named transfer handlers.
Two handlers are built in and always registered first:

- ``"proxy"`` exposes a :class:`ProxyMarked` value by reference over a fresh
  sub-channel.
- ``"throw"`` carries a failure raised on the exposing side back to the
  caller, where it is raised again as :class:`~pyremote.errors.RemoteError`.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable, Iterator, Sequence
from typing import Any, Generic, TypeVar

from ..errors import (
    NotSendableError,
    RemoteError,
    UnknownTransferHandlerError,
    remote_error_class,
)
from ..interfaces import Endpoint, TransferHandler
from .channel import MessageChannel
from .protocol import Argument, WireValue, WireValueType, is_sendable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Marker wrappers
# ---------------------------------------------------------------------------


class ProxyMarked(Generic[T]):
    """Wrapper meaning "send *value* by reference, not by value"."""

    __slots__ = ("value",)

    def __init__(self, value: T) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"<ProxyMarked {self.value!r}>"


def proxy(value: T) -> ProxyMarked[T]:
    """Mark *value* to be exposed by reference when it crosses the channel."""
    if isinstance(value, ProxyMarked):
        return value
    return ProxyMarked(value)


class ThrownValue:
    """Internal wrapper for a failure produced while serving a request."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"<ThrownValue {self.value!r}>"


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------


class ProxyTransferHandler:
    """Opens a sub-channel per value and exposes the value on one end.

    Both ends of the sub-channel encode with *registry*, so handlers of a
    custom registry keep applying to nested handles.
    """

    def __init__(
        self,
        registry: TransferHandlerRegistry | None = None,
        channel_factory: Callable[[], Any] = MessageChannel,
    ) -> None:
        self.registry = registry
        self.channel_factory = channel_factory

    def can_handle(self, value: Any) -> bool:
        return isinstance(value, ProxyMarked)

    def serialize(self, value: ProxyMarked[Any]) -> tuple[Any, list[Endpoint]]:
        from .exposer import expose

        channel = self.channel_factory()
        expose(value.value, channel.port1, self.registry)
        return 0, [channel.port2]

    def deserialize(self, value: Any, ports: list[Endpoint]) -> Any:
        from .remote_handle import wrap

        if not ports:
            raise ValueError("Did not receive a sub-channel for a proxied value")
        port = ports[0]
        port.start()
        return wrap(port, self.registry)


class ThrowTransferHandler:
    """Serializes failures as ``{isError, value}`` records and re-raises them."""

    def can_handle(self, value: Any) -> bool:
        return isinstance(value, ThrownValue)

    def serialize(self, value: ThrownValue) -> tuple[Any, list[Endpoint]]:
        thrown = value.value
        if isinstance(thrown, BaseException):
            record: dict[str, Any] = {
                "message": str(thrown),
                "name": type(thrown).__name__,
            }
            stack = "".join(traceback.format_exception(type(thrown), thrown, thrown.__traceback__))
            if stack:
                record["stack"] = stack
            if isinstance(thrown, NotSendableError):
                record["valueType"] = thrown.value_type
            return {"isError": True, "value": record}, []
        return {"isError": False, "value": thrown}, []

    def deserialize(self, value: Any, ports: list[Endpoint]) -> Any:
        if value.get("isError"):
            record = value["value"]
            error = remote_error_class(record.get("name"))(
                record.get("message", ""),
                name=record.get("name"),
                stack=record.get("stack"),
            )
            if isinstance(error, NotSendableError):
                error.value_type = record.get("valueType")
            raise error
        raise RemoteError(repr(value.get("value")), value=value.get("value"))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TransferHandlerRegistry:
    """Singleton, ordered registry of named transfer handlers.

    Handlers are consulted in registration order when encoding and the first
    one whose ``can_handle()`` accepts a value wins. Registering a name again
    replaces the handler but keeps its position.
    """

    _instance: TransferHandlerRegistry | None = None

    def __init__(self) -> None:
        self._handlers: dict[str, TransferHandler] = {}
        self._install_builtins()

    @classmethod
    def get_instance(cls) -> TransferHandlerRegistry:
        """Return the singleton instance, creating it if necessary."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _install_builtins(self) -> None:
        self._handlers["proxy"] = ProxyTransferHandler(self)
        self._handlers["throw"] = ThrowTransferHandler()

    def register(self, name: str, handler: TransferHandler) -> None:
        """Register *handler* under *name*."""
        if name in self._handlers:
            logger.debug("Overwriting existing transfer handler %s", name)
        self._handlers[name] = handler
        logger.debug("Registered transfer handler: %s", name)

    def unregister(self, name: str) -> None:
        if self._handlers.pop(name, None) is None:
            raise UnknownTransferHandlerError(name)

    def get(self, name: str) -> TransferHandler:
        try:
            return self._handlers[name]
        except KeyError:
            raise UnknownTransferHandlerError(name) from None

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    def names(self) -> list[str]:
        return list(self._handlers)

    def items(self) -> Iterator[tuple[str, TransferHandler]]:
        return iter(list(self._handlers.items()))

    def clear(self) -> None:
        """Remove user handlers, keeping only the built-ins (useful for tests)."""
        self._handlers.clear()
        self._install_builtins()

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


class CallbackTransferHandler:
    """Adapts three plain functions to the TransferHandler protocol."""

    def __init__(
        self,
        can_handle: Callable[[Any], bool],
        serialize: Callable[[Any], Any],
        deserialize: Callable[[Any], Any],
    ) -> None:
        self._can_handle = can_handle
        self._serialize = serialize
        self._deserialize = deserialize

    def can_handle(self, value: Any) -> bool:
        return bool(self._can_handle(value))

    def serialize(self, value: Any) -> tuple[Any, list[Endpoint]]:
        return self._serialize(value), []

    def deserialize(self, value: Any, ports: list[Endpoint]) -> Any:
        return self._deserialize(value)


class TypeTransferHandler(CallbackTransferHandler):
    """Handler for every instance of one type (subclasses included)."""

    def __init__(
        self,
        value_type: type,
        serialize: Callable[[Any], Any],
        deserialize: Callable[[Any], Any],
    ) -> None:
        super().__init__(lambda v: isinstance(v, value_type), serialize, deserialize)
        self.value_type = value_type


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def to_wire_value(
    value: Any, registry: TransferHandlerRegistry | None = None
) -> tuple[WireValue, list[Endpoint]]:
    """Encode *value* for the wire.

    Raises:
        NotSendableError: if no handler claims the value and it is not Sendable.
    """
    if registry is None:
        registry = TransferHandlerRegistry.get_instance()
    for name, handler in registry.items():
        if handler.can_handle(value):
            serialized, ports = handler.serialize(value)
            return {"type": WireValueType.HANDLER.value, "name": name, "value": serialized}, list(ports)
    if not is_sendable(value):
        raise NotSendableError(value)
    return {"type": WireValueType.RAW.value, "value": value}, []


def from_wire_value(
    wire_value: WireValue,
    ports: Sequence[Endpoint] = (),
    registry: TransferHandlerRegistry | None = None,
) -> Any:
    """Decode a wire value. Raises whatever the ``throw`` handler raises."""
    kind = wire_value.get("type")
    if kind == WireValueType.HANDLER.value:
        if registry is None:
            registry = TransferHandlerRegistry.get_instance()
        handler = registry.get(wire_value["name"])  # type: ignore[typeddict-item]
        return handler.deserialize(wire_value["value"], list(ports))
    if kind == WireValueType.RAW.value:
        return wire_value["value"]
    raise ValueError(f"Unknown wire value type: {kind!r}")


def process_arguments(
    args: Sequence[Any], registry: TransferHandlerRegistry | None = None
) -> tuple[list[Argument], list[Endpoint]]:
    """Encode call arguments; sub-channels are concatenated in argument order."""
    argument_list: list[Argument] = []
    ports: list[Endpoint] = []
    for arg in args:
        wire_value, arg_ports = to_wire_value(arg, registry)
        argument_list.append({"value": wire_value, "portCount": len(arg_ports)})
        ports.extend(arg_ports)
    return argument_list, ports


def decode_arguments(
    argument_list: Sequence[Argument],
    ports: Sequence[Endpoint],
    registry: TransferHandlerRegistry | None = None,
) -> tuple[list[Any], list[Endpoint]]:
    """Inverse of :func:`process_arguments`; returns the unconsumed ports too."""
    remaining = list(ports)
    decoded = []
    for argument in argument_list:
        count = argument.get("portCount", 0)
        taken, remaining = remaining[:count], remaining[count:]
        decoded.append(from_wire_value(argument["value"], taken, registry))
    return decoded, remaining
