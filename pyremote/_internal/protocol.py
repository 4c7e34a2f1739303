"""
Wire Protocol.

This module contains:
- Message and wire value TypedDicts (the JSON-shaped envelopes on the channel)
- The Sendable value universe (is_sendable)
- debugprint for opt-in message tracing
"""

from __future__ import annotations

import array
import datetime
import decimal
import logging
import re
from enum import Enum
from typing import Any, Literal, TypedDict, Union

from typing_extensions import NotRequired

from ..config import load_config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class WireValueType(str, Enum):
    RAW = "RAW"
    HANDLER = "HANDLER"


class MessageType(str, Enum):
    GET = "GET"
    SET = "SET"
    APPLY = "APPLY"
    CONSTRUCT = "CONSTRUCT"
    RELEASE = "RELEASE"


REQUEST_TYPES = frozenset(t.value for t in MessageType)

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class RawWireValue(TypedDict):
    id: NotRequired[str]
    type: Literal["RAW"]
    value: Any


class HandlerWireValue(TypedDict):
    id: NotRequired[str]
    type: Literal["HANDLER"]
    name: str
    value: Any


WireValue = Union[RawWireValue, HandlerWireValue]


class Argument(TypedDict):
    value: WireValue
    portCount: int


class GetMessage(TypedDict):
    id: NotRequired[str]
    type: Literal["GET"]
    path: list[str]


class SetMessage(TypedDict):
    id: NotRequired[str]
    type: Literal["SET"]
    path: list[str]
    value: WireValue


class ApplyMessage(TypedDict):
    id: NotRequired[str]
    type: Literal["APPLY"]
    path: list[str]
    argumentList: list[Argument]


class ConstructMessage(TypedDict):
    id: NotRequired[str]
    type: Literal["CONSTRUCT"]
    path: list[str]
    argumentList: list[Argument]


class ReleaseMessage(TypedDict):
    id: NotRequired[str]
    type: Literal["RELEASE"]


Message = Union[GetMessage, SetMessage, ApplyMessage, ConstructMessage, ReleaseMessage]

# ---------------------------------------------------------------------------
# Sendable universe
# ---------------------------------------------------------------------------

_SCALAR_TYPES: tuple[type, ...] = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    bytearray,
    decimal.Decimal,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    re.Pattern,
    array.array,
)


def is_sendable(value: Any) -> bool:
    """Return True if *value* can cross the channel without a transfer handler.

    Containers are checked recursively. Subclasses of the container types are
    rejected because cloning would not preserve their type.
    """
    if isinstance(value, _SCALAR_TYPES):
        return True
    kind = type(value)
    if kind in (list, tuple, set, frozenset):
        return all(is_sendable(item) for item in value)
    if kind is dict:
        return all(is_sendable(k) and is_sendable(v) for k, v in value.items())
    return False


# ---------------------------------------------------------------------------
# Debug Logic
# ---------------------------------------------------------------------------


def debugprint(*args: Any) -> None:
    if load_config()["debug_messages"]:
        logger.debug(" ".join(str(arg) for arg in args))
