from __future__ import annotations

import functools
import logging
import os
from typing import TypedDict

logger = logging.getLogger(__name__)

_DEFAULT_RELEASE_GRACE_SECONDS = 0.1


class RemoteConfig(TypedDict):
    """Process-wide settings for pyremote.

    Values are read once from the environment by :func:`load_config`.
    """

    release_grace_seconds: float
    """Delay before a collected endpoint is closed, so an in-flight RELEASE
    acknowledgement can still land (``PYREMOTE_RELEASE_GRACE``)."""

    debug_messages: bool
    """Trace every message at DEBUG level (``PYREMOTE_DEBUG_RPC=1``)."""


def _read_grace(raw: str | None) -> float:
    if raw is None:
        return _DEFAULT_RELEASE_GRACE_SECONDS
    try:
        grace = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid PYREMOTE_RELEASE_GRACE=%r", raw)
        return _DEFAULT_RELEASE_GRACE_SECONDS
    if grace < 0:
        logger.warning("PYREMOTE_RELEASE_GRACE must not be negative, got %s", grace)
        return _DEFAULT_RELEASE_GRACE_SECONDS
    return grace


@functools.lru_cache(maxsize=1)
def load_config() -> RemoteConfig:
    """Build the configuration from environment variables.

    Cached; tests that change the environment call ``load_config.cache_clear()``.
    """
    return RemoteConfig(
        release_grace_seconds=_read_grace(os.environ.get("PYREMOTE_RELEASE_GRACE")),
        debug_messages=os.environ.get("PYREMOTE_DEBUG_RPC") == "1",
    )
