"""
pyremote - Use objects that live on the other side of a message channel.

pyremote exposes an object graph on one end of an asynchronous, message-based
channel and hands the other end a handle that behaves like the object. Every
attribute read, assignment, call or construction on the handle becomes a
message; the result, possibly itself a handle, flows back.

Key Features:
    - Lazy access paths: no traffic until a value is awaited, called or set
    - Pluggable transfer handlers for values that cannot be sent by value
    - Pass objects by reference with ``proxy()`` (each gets its own sub-channel)
    - Remote exceptions are re-raised locally with name, message and traceback
    - Reference-counted cleanup, plus explicit and scoped release

Basic Usage:
    >>> import asyncio
    >>> import pyremote
    >>> class Counter:
    ...     def __init__(self):
    ...         self.counter = 0
    ...     def inc(self):
    ...         self.counter += 1
    ...         return self.counter
    >>> async def main():
    ...     channel = pyremote.MessageChannel()
    ...     pyremote.expose(Counter(), channel.port1)
    ...     async with pyremote.wrap(channel.port2) as remote:
    ...         await remote.inc()
    ...         return await remote.counter
    >>> asyncio.run(main())
    1
"""

from ._internal.channel import MessageChannel, MessagePort
from ._internal.exposer import Exposer, expose
from ._internal.protocol import MessageType, WireValueType, is_sendable
from ._internal.remote_handle import (
    RemoteClient,
    RemoteHandle,
    assign,
    client_of,
    construct,
    release_proxy,
    wrap,
)
from ._internal.transfer_handlers import (
    CallbackTransferHandler,
    ProxyMarked,
    TransferHandlerRegistry,
    TypeTransferHandler,
    proxy,
)
from .config import RemoteConfig, load_config
from .errors import (
    MalformedRequestError,
    NotCallableError,
    NotSendableError,
    ProxyReleasedError,
    PyRemoteError,
    RemoteError,
    RemoteMalformedRequestError,
    RemoteNotCallableError,
    RemoteNotSendableError,
    UnknownTransferHandlerError,
)
from .interfaces import Endpoint, TransferHandler

__version__ = "0.1.0"

__all__ = [
    "expose",
    "wrap",
    "proxy",
    "construct",
    "assign",
    "release_proxy",
    "client_of",
    "Exposer",
    "RemoteClient",
    "RemoteHandle",
    "Endpoint",
    "TransferHandler",
    "MessageChannel",
    "MessagePort",
    "MessageType",
    "WireValueType",
    "ProxyMarked",
    "TransferHandlerRegistry",
    "CallbackTransferHandler",
    "TypeTransferHandler",
    "is_sendable",
    "register_transfer_handler",
    "register_array_handlers",
    "RemoteConfig",
    "load_config",
    "PyRemoteError",
    "MalformedRequestError",
    "NotCallableError",
    "NotSendableError",
    "ProxyReleasedError",
    "RemoteError",
    "RemoteNotCallableError",
    "RemoteMalformedRequestError",
    "RemoteNotSendableError",
    "UnknownTransferHandlerError",
]


def register_transfer_handler(name: str, handler: TransferHandler) -> None:
    """Register a transfer handler on the process-wide registry."""
    TransferHandlerRegistry.get_instance().register(name, handler)


def register_array_handlers() -> list[str]:
    """Register numpy/torch handlers for whichever of the two is installed."""
    from ._internal.array_handlers import register_array_handlers as _register
    return _register()
