"""Reference counting of client handles per endpoint.

Every handle registers itself here. When the last handle for an endpoint is
garbage collected, the remote side is asked to release its resources and
the endpoint is closed after a short grace period.

Collection timing is up to the interpreter and never guaranteed; explicit
release (``release_proxy`` or ``async with wrap(...)``) is the deterministic
path and should be preferred.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any

from ..config import load_config
from ..interfaces import Endpoint
from .correlator import generate_request_id
from .protocol import MessageType

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ReferenceState:
    endpoint: Endpoint
    loop: asyncio.AbstractEventLoop | None
    count: int = 0
    retired: bool = False


class LifecycleManager:
    """Singleton tracking live handles per endpoint."""

    _instance: LifecycleManager | None = None

    def __init__(self, grace_seconds: float | None = None) -> None:
        self._states: dict[int, ReferenceState] = {}
        self._grace_seconds = grace_seconds

    @classmethod
    def get_instance(cls) -> LifecycleManager:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def grace_seconds(self) -> float:
        if self._grace_seconds is not None:
            return self._grace_seconds
        return load_config()["release_grace_seconds"]

    def register(self, handle: Any, endpoint: Endpoint) -> None:
        """Count *handle* against *endpoint* and watch it for collection."""
        state = self._states.get(id(endpoint))
        if state is None:
            try:
                loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            state = ReferenceState(endpoint=endpoint, loop=loop)
            self._states[id(endpoint)] = state
        state.count += 1
        # The callback must not reference the handle itself.
        finalizer = weakref.finalize(handle, self._finalize, state)
        finalizer.atexit = False

    def count(self, endpoint: Endpoint) -> int:
        state = self._states.get(id(endpoint))
        return state.count if state else 0

    def is_tracked(self, endpoint: Endpoint) -> bool:
        return id(endpoint) in self._states

    def forget(self, endpoint: Endpoint) -> None:
        """Drop bookkeeping after an explicit release; later collections do nothing."""
        state = self._states.pop(id(endpoint), None)
        if state is not None:
            state.retired = True

    def _finalize(self, state: ReferenceState) -> None:
        if state.retired:
            return
        state.count -= 1
        if state.count > 0:
            return
        state.retired = True
        self._states.pop(id(state.endpoint), None)
        endpoint = state.endpoint
        logger.debug("Last handle for %r collected; releasing", endpoint)

        loop = state.loop
        if loop is None or loop.is_closed():
            self._close_quietly(endpoint)
            return
        try:
            loop.call_soon_threadsafe(self._release_endpoint, endpoint)
        except RuntimeError:
            # Loop shut down between the check and the call.
            self._close_quietly(endpoint)

    def _release_endpoint(self, endpoint: Endpoint) -> None:
        try:
            endpoint.post({"id": generate_request_id(), "type": MessageType.RELEASE.value})
        except Exception as exc:
            logger.debug("Best-effort RELEASE on %r failed: %s", endpoint, exc)
        loop = asyncio.get_running_loop()
        loop.call_later(self.grace_seconds, self._close_quietly, endpoint)

    @staticmethod
    def _close_quietly(endpoint: Endpoint) -> None:
        try:
            endpoint.close()
        except Exception as exc:
            logger.debug("Closing %r failed: %s", endpoint, exc)
