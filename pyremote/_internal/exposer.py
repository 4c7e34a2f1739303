"""Serving side: binds a local object graph to an endpoint."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from typing import Any

from ..errors import MalformedRequestError, NotCallableError
from ..interfaces import Endpoint
from .protocol import REQUEST_TYPES, MessageType, WireValue, debugprint
from .transfer_handlers import (
    ThrownValue,
    TransferHandlerRegistry,
    decode_arguments,
    from_wire_value,
    proxy,
    to_wire_value,
)

logger = logging.getLogger(__name__)

_LEAF_TYPES = (type(None), bool, int, float, complex, str, bytes, bytearray)

_INDEX_RE = re.compile(r"-?[0-9]+")


def _step(obj: Any, segment: str) -> Any:
    """Resolve one path segment; anything unresolvable yields None."""
    if isinstance(obj, _LEAF_TYPES):
        return None
    if isinstance(obj, Mapping):
        return obj.get(segment)
    if isinstance(obj, Sequence) and _INDEX_RE.fullmatch(segment):
        try:
            return obj[int(segment)]
        except IndexError:
            return None
    return getattr(obj, segment, None)


def resolve_path(root: Any, path: Sequence[str]) -> Any:
    obj = root
    for segment in path:
        obj = _step(obj, segment)
        if obj is None:
            return None
    return obj


def _assign(parent: Any, field: str, value: Any) -> None:
    if parent is None or isinstance(parent, _LEAF_TYPES):
        raise MalformedRequestError("Only assignment to objects (not None) is allowed!")
    if isinstance(parent, MutableMapping):
        parent[field] = value
    elif isinstance(parent, MutableSequence) and _INDEX_RE.fullmatch(field):
        parent[int(field)] = value
    else:
        setattr(parent, field, value)


class Exposer:
    """Executes incoming requests against ``root`` and answers them.

    Every request carrying an id receives exactly one response: failures are
    wrapped as thrown values and sent back like any other result.
    """

    def __init__(
        self,
        root: Any,
        endpoint: Endpoint,
        registry: TransferHandlerRegistry | None = None,
    ) -> None:
        self.root = root
        self.endpoint = endpoint
        self.registry = registry
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    def listen(self) -> None:
        self.endpoint.add_listener(self._on_message)
        self.endpoint.start()

    def close(self) -> None:
        """Detach from the endpoint and close it."""
        if self._closed:
            return
        self._closed = True
        self.endpoint.remove_listener(self._on_message)
        self.endpoint.close()

    def _on_message(self, payload: Any, ports: list[Endpoint]) -> None:
        if not isinstance(payload, Mapping) or "type" not in payload:
            logger.warning("Dropping malformed message without a type: %r", payload)
            return
        msg_type = payload["type"]
        if not isinstance(msg_type, str) or msg_type not in REQUEST_TYPES:
            # Responses for a client sharing this endpoint.
            return
        debugprint("expose: request", payload)

        msg_id = payload.get("id")
        result = self._dispatch(msg_type, payload, list(ports))
        task = asyncio.ensure_future(self._reply(msg_id, msg_type, result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _dispatch(self, msg_type: str, payload: Mapping[str, Any], ports: list[Endpoint]) -> Any:
        path = [str(p) for p in payload.get("path") or []]
        try:
            args, ports = decode_arguments(payload.get("argumentList") or [], ports, self.registry)
            parent = resolve_path(self.root, path[:-1])
            target = resolve_path(self.root, path)

            if msg_type == MessageType.GET:
                return target
            if msg_type == MessageType.SET:
                if not path:
                    raise MalformedRequestError("Only assignment of properties is allowed!")
                value_wire: WireValue | None = payload.get("value")
                if value_wire is None:
                    raise MalformedRequestError("SET request without a value")
                _assign(parent, path[-1], from_wire_value(value_wire, ports, self.registry))
                return True
            if msg_type == MessageType.APPLY:
                if not callable(target):
                    raise NotCallableError(f"{'.'.join(path) or '<root>'} is not callable")
                return target(*args)
            if msg_type == MessageType.CONSTRUCT:
                if not callable(target):
                    raise NotCallableError(f"{'.'.join(path) or '<root>'} is not a constructor")
                return proxy(target(*args))
            # RELEASE
            return None
        except (Exception, asyncio.CancelledError) as exc:
            logger.debug("Request %s %s failed: %r", msg_type, path, exc)
            return ThrownValue(exc)

    async def _reply(self, msg_id: str | None, msg_type: str, result: Any) -> None:
        if inspect.isawaitable(result):
            try:
                result = await result
            except asyncio.CancelledError as exc:
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                # Cancelled inside the served call, not this reply.
                result = ThrownValue(exc)
            except Exception as exc:
                result = ThrownValue(exc)
        try:
            wire_value, ports = to_wire_value(result, self.registry)
        except Exception as exc:
            logger.debug("Could not encode result of %s: %s", msg_type, exc)
            wire_value, ports = to_wire_value(ThrownValue(exc), self.registry)

        response: dict[str, Any] = {**wire_value, "id": msg_id}
        self.endpoint.post(response, ports)
        if msg_type == MessageType.RELEASE:
            # Detach only after the acknowledgement above has been posted.
            self.close()


def expose(
    root: Any,
    endpoint: Endpoint,
    registry: TransferHandlerRegistry | None = None,
) -> Exposer:
    """Serve ``root`` over ``endpoint`` until a RELEASE request arrives."""
    exposer = Exposer(root, endpoint, registry)
    exposer.listen()
    return exposer
