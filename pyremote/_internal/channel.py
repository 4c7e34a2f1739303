"""
In-process Endpoint implementation.

MessageChannel creates two entangled MessagePort objects. A payload posted on
one port is cloned and delivered to the listeners of the other port on the
running event loop, one message per loop callback. Attached ports are handed
over as-is, which is how sub-channels travel.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections import deque
from collections.abc import Sequence
from typing import Any

from ..interfaces import Endpoint, MessageListener
from .protocol import debugprint

logger = logging.getLogger(__name__)

_port_ids = itertools.count()


class MessagePort:
    """One end of a :class:`MessageChannel`.

    Messages arriving before :meth:`start` are buffered. Posting to or from a
    closed port silently drops the message.
    """

    def __init__(self) -> None:
        self.port_id = next(_port_ids)
        self._peer: MessagePort | None = None
        self._listeners: list[MessageListener] = []
        self._inbox: deque[tuple[Any, list[Endpoint]]] = deque()
        self._started = False
        self._closed = False
        self._delivery_scheduled = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def started(self) -> bool:
        return self._started

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def post(self, payload: Any, ports: Sequence[Endpoint] = ()) -> None:
        if self._closed:
            debugprint(f"port {self.port_id}: dropping message posted on closed port", payload)
            return
        peer = self._peer
        if peer is None or peer._closed:
            debugprint(f"port {self.port_id}: peer closed, dropping message", payload)
            return
        # Structured clone: the receiver never shares memory with the sender.
        cloned = copy.deepcopy(payload)
        debugprint(f"port {self.port_id} -> port {peer.port_id}:", cloned)
        peer._enqueue(cloned, list(ports))

    def start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        self._schedule_delivery()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbox.clear()
        self._listeners.clear()
        logger.debug("MessagePort %s closed", self.port_id)

    def _enqueue(self, payload: Any, ports: list[Endpoint]) -> None:
        self._inbox.append((payload, ports))
        self._schedule_delivery()

    def _schedule_delivery(self) -> None:
        if self._delivery_scheduled or not self._started or not self._inbox:
            return
        loop = asyncio.get_running_loop()
        self._delivery_scheduled = True
        loop.call_soon(self._deliver_one)

    def _deliver_one(self) -> None:
        self._delivery_scheduled = False
        if self._closed or not self._inbox:
            return
        payload, ports = self._inbox.popleft()
        for listener in list(self._listeners):
            try:
                listener(payload, ports)
            except Exception:
                logger.exception("MessagePort %s: listener %r failed", self.port_id, listener)
        self._schedule_delivery()

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("started" if self._started else "idle")
        return f"<MessagePort id={self.port_id} {state}>"


class MessageChannel:
    """A pair of entangled ports, ``port1`` and ``port2``."""

    def __init__(self) -> None:
        self.port1 = MessagePort()
        self.port2 = MessagePort()
        self.port1._peer = self.port2
        self.port2._peer = self.port1

    def __iter__(self):
        return iter((self.port1, self.port2))

    def __repr__(self) -> str:
        return f"<MessageChannel {self.port1!r} <-> {self.port2!r}>"
