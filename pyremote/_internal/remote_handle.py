"""Client side: handles to objects exposed on the other end of an endpoint.

RemoteClient is the explicit engine: it turns get/set/call/construct/release
on an access path into requests. RemoteHandle is the dynamic layer on top:
attribute access builds longer paths without any traffic, and awaiting,
calling or assigning turns into a request on the client.

    remote = wrap(port)
    await remote.counter          # GET ["counter"]
    await remote.inc()            # APPLY ["inc"]
    remote.counter = 10           # SET ["counter"], not awaited
    pair = await construct(remote.Pair, 1, 2)
    await release_proxy(remote)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Generator, Iterable, Sequence
from typing import Any, TypeVar, cast

from ..errors import MalformedRequestError, ProxyReleasedError
from ..interfaces import Endpoint
from .correlator import Correlator, Response
from .lifecycle import LifecycleManager
from .protocol import MessageType
from .transfer_handlers import (
    TransferHandlerRegistry,
    from_wire_value,
    process_arguments,
    to_wire_value,
)

logger = logging.getLogger(__name__)

proxied_type = TypeVar("proxied_type", bound=object)

Path = tuple[str, ...]


def _as_path(path: Iterable[Any]) -> Path:
    return tuple(str(p) for p in path)


class RemoteClient:
    """Issues requests for one endpoint and decodes the responses.

    Once :meth:`release` completes, every further operation, including those
    on handles created from this client, raises ProxyReleasedError.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        registry: TransferHandlerRegistry | None = None,
        lifecycle: LifecycleManager | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.registry = registry
        self.correlator = Correlator(endpoint)
        self.lifecycle = lifecycle or LifecycleManager.get_instance()
        self.released = False
        self._background: set[asyncio.Future[Response]] = set()

    def check_released(self) -> None:
        if self.released:
            raise ProxyReleasedError()

    def _decode(self, response: Response) -> Any:
        wire_value, ports = response
        return from_wire_value(wire_value, ports, self.registry)

    async def get(self, path: Sequence[Any]) -> Any:
        """Fetch the value at *path* by value (or as a handle, if proxy-marked)."""
        self.check_released()
        full_path = _as_path(path)
        if not full_path:
            raise MalformedRequestError("The root object cannot be fetched by value")
        response = await self.correlator.request(
            {"type": MessageType.GET.value, "path": list(full_path)}
        )
        return self._decode(response)

    async def set(self, path: Sequence[Any], value: Any) -> bool:
        """Assign *value* at *path* and wait for the acknowledgement."""
        return self._decode(await self._post_set(path, value))

    def set_nowait(self, path: Sequence[Any], value: Any) -> asyncio.Future[Response]:
        """Assign without waiting; the request is posted before this returns.

        Failures reported by the remote side are logged, since nobody awaits
        the acknowledgement.
        """
        future = self._post_set(path, value)
        self._background.add(future)
        future.add_done_callback(self._background_done)
        return future

    def _post_set(self, path: Sequence[Any], value: Any) -> asyncio.Future[Response]:
        self.check_released()
        full_path = _as_path(path)
        if not full_path:
            raise MalformedRequestError("Only assignment of properties is allowed!")
        wire_value, ports = to_wire_value(value, self.registry)
        return self.correlator.send(
            {"type": MessageType.SET.value, "path": list(full_path), "value": wire_value},
            ports,
        )

    def _background_done(self, future: asyncio.Future[Response]) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        try:
            self._decode(future.result())
        except Exception as exc:
            logger.warning("Unacknowledged SET failed on the remote side: %s", exc)

    async def call(self, path: Sequence[Any], args: Sequence[Any] = ()) -> Any:
        """Invoke the function at *path* with positional *args*."""
        return await self._invoke(MessageType.APPLY, path, args)

    async def construct(self, path: Sequence[Any], args: Sequence[Any] = ()) -> Any:
        """Instantiate the class at *path*; the result is always a handle."""
        return await self._invoke(MessageType.CONSTRUCT, path, args)

    async def _invoke(self, kind: MessageType, path: Sequence[Any], args: Sequence[Any]) -> Any:
        self.check_released()
        argument_list, ports = process_arguments(args, self.registry)
        response = await self.correlator.request(
            {"type": kind.value, "path": list(_as_path(path)), "argumentList": argument_list},
            ports,
        )
        return self._decode(response)

    async def release(self) -> None:
        """Release the remote object, then close the endpoint."""
        self.check_released()
        await self.correlator.request({"type": MessageType.RELEASE.value})
        self.endpoint.close()
        self.released = True
        self.lifecycle.forget(self.endpoint)
        logger.debug("Released remote endpoint %r", self.endpoint)

    def handle(self, path: Iterable[Any] = ()) -> RemoteHandle:
        self.check_released()
        return RemoteHandle(self, _as_path(path))

    def create_caller(self, interface: type[proxied_type], path: Iterable[Any] = ()) -> proxied_type:
        """Build a typed stub for *interface*.

        Every public coroutine method of *interface* becomes a remote call of
        the member with the same name under *path*.
        """
        this = self
        base = _as_path(path)

        class CallWrapper:
            def __getattr__(self, name: str) -> Any:
                attr = getattr(interface, name, None)
                if not callable(attr) or name.startswith("_"):
                    raise AttributeError(f"{name} is not a valid method")
                if not inspect.iscoroutinefunction(attr):
                    raise ValueError(f"{name} is not a coroutine function")

                async def method(*args: Any) -> Any:
                    return await this.call(base + (name,), args)

                method.__name__ = name
                method.__qualname__ = f"{interface.__name__}.{name}"
                return method

            def __repr__(self) -> str:
                return f"<{interface.__name__} caller for {this.endpoint!r}>"

        return cast(proxied_type, CallWrapper())


class RemoteHandle:
    """Stand-in for a remote object, function or value at an access path.

    Dunder attribute names are never forwarded. Names that collide with
    Python syntax or start with an underscore can be reached with
    ``handle["name"]``.
    """

    __slots__ = ("_pyremote_client", "_pyremote_path", "__weakref__")

    def __init__(self, client: RemoteClient, path: Path = ()) -> None:
        object.__setattr__(self, "_pyremote_client", client)
        object.__setattr__(self, "_pyremote_path", path)
        client.lifecycle.register(self, client.endpoint)

    def __getattr__(self, name: str) -> RemoteHandle:
        # Slots read before __init__ ran (copy, pickle) must not recurse.
        if (name.startswith("__") and name.endswith("__")) or name.startswith("_pyremote_"):
            raise AttributeError(name)
        return self._pyremote_client.handle(self._pyremote_path + (name,))

    def __getitem__(self, key: Any) -> RemoteHandle:
        return self._pyremote_client.handle(self._pyremote_path + (str(key),))

    def __setattr__(self, name: str, value: Any) -> None:
        self._pyremote_client.set_nowait(self._pyremote_path + (name,), value)

    def __setitem__(self, key: Any, value: Any) -> None:
        self._pyremote_client.set_nowait(self._pyremote_path + (str(key),), value)

    def __delattr__(self, name: str) -> None:
        raise TypeError("Remote attributes cannot be deleted")

    def __call__(self, *args: Any) -> Any:
        client = self._pyremote_client
        client.check_released()
        return client.call(self._pyremote_path, args)

    def __await__(self) -> Generator[Any, None, Any]:
        client = self._pyremote_client
        client.check_released()
        if not self._pyremote_path:
            # Awaiting the root must not dereference it.
            return self._resolve_self().__await__()
        return client.get(self._pyremote_path).__await__()

    async def _resolve_self(self) -> RemoteHandle:
        return self

    def __iter__(self) -> Any:
        raise TypeError("Remote handles are not iterable; fetch the value with await first")

    async def __aenter__(self) -> RemoteHandle:
        self._pyremote_client.check_released()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        client = self._pyremote_client
        if not client.released:
            await client.release()

    def __repr__(self) -> str:
        path = ".".join(self._pyremote_path) or "<root>"
        state = " released" if self._pyremote_client.released else ""
        return f"<RemoteHandle {path}{state}>"


def client_of(handle: RemoteHandle) -> RemoteClient:
    """Return the client a handle issues its requests through."""
    return object.__getattribute__(handle, "_pyremote_client")


def path_of(handle: RemoteHandle) -> Path:
    return object.__getattribute__(handle, "_pyremote_path")


def wrap(endpoint: Endpoint, registry: TransferHandlerRegistry | None = None) -> RemoteHandle:
    """Return a root handle for the object exposed on the other end of *endpoint*."""
    return RemoteClient(endpoint, registry).handle()


async def construct(handle: RemoteHandle, *args: Any) -> RemoteHandle:
    """Instantiate the remote class *handle* points at."""
    return await client_of(handle).construct(path_of(handle), args)


async def assign(handle: RemoteHandle, value: Any) -> bool:
    """Assign *value* to the remote location *handle* points at, awaiting the acknowledgement."""
    return await client_of(handle).set(path_of(handle), value)


async def release_proxy(handle: RemoteHandle) -> None:
    """Release the remote side of *handle* and close its endpoint."""
    await client_of(handle).release()
