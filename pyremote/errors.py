"""Error types raised by pyremote."""

from __future__ import annotations

from typing import Any


class PyRemoteError(Exception):
    """Base class for all pyremote errors."""


class MalformedRequestError(PyRemoteError, ValueError):
    """Raised by the exposing side for a SET without a usable target."""


class NotCallableError(PyRemoteError, TypeError):
    """Raised by the exposing side for APPLY/CONSTRUCT on a non-callable."""


class ProxyReleasedError(PyRemoteError, RuntimeError):
    """Raised locally for any operation on a released handle."""

    def __init__(self) -> None:
        super().__init__("Proxy has been released and is not useable")


class UnknownTransferHandlerError(PyRemoteError, LookupError):
    """Raised when a wire value names a transfer handler that is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No transfer handler registered under {name!r}")


class NotSendableError(PyRemoteError, TypeError):
    """Raised when a value outside the Sendable universe has to be sent raw."""

    def __init__(self, value: Any) -> None:
        self.value_type = type(value).__name__
        super().__init__(
            f"Object of type {self.value_type} cannot be sent by value. "
            f"Wrap it with pyremote.proxy() or register a transfer handler."
        )


class RemoteError(PyRemoteError):
    """Raised when the remote side reports an exception.

    ``str(err)`` is the remote message. ``name`` is the remote exception type
    name and ``stack`` the remote traceback text, when known. For thrown
    values that were not exceptions, ``value`` holds the raw value and
    ``name`` is None.
    """

    name: str | None
    message: str
    stack: str | None
    value: Any

    def __init__(
        self,
        message: str,
        name: str | None = None,
        stack: str | None = None,
        value: Any = None,
    ) -> None:
        self.name = name
        self.message = message
        self.stack = stack
        self.value = value
        # Bypass cooperative __init__ of mixed-in kinds (e.g. NotSendableError).
        Exception.__init__(self, message)

    def __repr__(self) -> str:
        return f"RemoteError(name={self.name!r}, message={self.message!r})"


class RemoteNotCallableError(RemoteError, NotCallableError):
    """NotCallableError raised on the exposing side."""


class RemoteMalformedRequestError(RemoteError, MalformedRequestError):
    """MalformedRequestError raised on the exposing side."""


class RemoteNotSendableError(RemoteError, NotSendableError):
    """NotSendableError raised on the exposing side while encoding a result.

    ``value_type`` is the type name reported by the remote side, or None
    when the peer did not send one.
    """

    value_type: str | None = None


_REMOTE_KINDS: dict[str, type[RemoteError]] = {
    "NotCallableError": RemoteNotCallableError,
    "MalformedRequestError": RemoteMalformedRequestError,
    "NotSendableError": RemoteNotSendableError,
}


def remote_error_class(name: str | None) -> type[RemoteError]:
    """Return the local class used to re-raise a remote exception named *name*."""
    if name is None:
        return RemoteError
    return _REMOTE_KINDS.get(name, RemoteError)
