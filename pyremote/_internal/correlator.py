"""Request/response correlation over a single endpoint."""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from ..interfaces import Endpoint
from .protocol import Message, WireValue, debugprint

logger = logging.getLogger(__name__)

Response = tuple[WireValue, list[Endpoint]]


def generate_request_id() -> str:
    """Return a fresh correlation id (random 122-bit UUID)."""
    return str(uuid.uuid4())


class Correlator:
    """Matches each response to the request that carried the same id.

    A single listener is attached to the endpoint while at least one request
    is outstanding. Responses may arrive in any order; messages whose id is
    not pending here are left alone for other listeners.
    """

    def __init__(self, endpoint: Endpoint) -> None:
        self.endpoint = endpoint
        self.pending: dict[str, asyncio.Future[Response]] = {}
        self._listening = False

    def send(self, message: Message, ports: Sequence[Endpoint] = ()) -> asyncio.Future[Response]:
        """Post *message* now and return a future for its response.

        The message leaves before this returns, so requests are posted in the
        order they are issued.
        """
        loop = asyncio.get_running_loop()
        request_id = generate_request_id()
        future: asyncio.Future[Response] = loop.create_future()
        self.pending[request_id] = future
        future.add_done_callback(functools.partial(self._forget, request_id))
        self._ensure_listening()

        self.endpoint.start()
        outgoing: dict[str, Any] = {**message, "id": request_id}
        debugprint("request:", outgoing)
        try:
            self.endpoint.post(outgoing, list(ports))
        except BaseException:
            future.cancel()
            raise
        return future

    async def request(self, message: Message, ports: Sequence[Endpoint] = ()) -> Response:
        """Post *message* and wait for its response.

        There is no cancellation on the wire: cancelling the awaiting task
        only forgets the local pending entry.
        """
        return await self.send(message, ports)

    def _forget(self, request_id: str, _future: asyncio.Future[Response]) -> None:
        self.pending.pop(request_id, None)
        if not self.pending and self._listening:
            self.endpoint.remove_listener(self._on_message)
            self._listening = False

    def _ensure_listening(self) -> None:
        if not self._listening:
            self.endpoint.add_listener(self._on_message)
            self._listening = True

    def _on_message(self, payload: Any, ports: list[Endpoint]) -> None:
        if not isinstance(payload, Mapping):
            return
        request_id = payload.get("id")
        if not isinstance(request_id, str):
            return
        future = self.pending.get(request_id)
        if future is None or future.done():
            return
        debugprint("response:", payload)
        future.set_result((dict(payload), list(ports)))  # type: ignore[arg-type]
