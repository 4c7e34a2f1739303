"""Optional transfer handlers for numpy arrays and torch tensors.

numpy and torch are not required for base pyremote usage. The handlers are
only registered when the library imports, and encode arrays as
``{dtype, shape, data}`` records so they cross the channel as plain bytes.
Tensors are always rebuilt on the CPU.
"""

from __future__ import annotations

import functools
import importlib
import logging
from abc import ABC, abstractmethod
from typing import Any

from typing_extensions import override

from ..interfaces import Endpoint
from .transfer_handlers import TransferHandlerRegistry

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def get_numpy_optional() -> Any | None:
    """Return the numpy module when available."""
    try:
        return importlib.import_module("numpy")
    except Exception:
        return None


@functools.lru_cache(maxsize=1)
def get_torch_optional() -> Any | None:
    """Return the torch module when available."""
    try:
        return importlib.import_module("torch")
    except Exception:
        return None


def require_numpy(feature_name: str) -> Any:
    """Return numpy or raise a clear feature-scoped error."""
    np = get_numpy_optional()
    if np is None:
        raise RuntimeError(f"{feature_name} requires numpy. Install 'numpy' to use this feature.")
    return np


def require_torch(feature_name: str) -> Any:
    """Return torch or raise a clear feature-scoped error."""
    torch = get_torch_optional()
    if torch is None:
        raise RuntimeError(f"{feature_name} requires PyTorch. Install 'torch' to use this feature.")
    return torch


class _ArrayTransferHandler(ABC):
    feature_name = "array transfer"

    @abstractmethod
    def can_handle(self, value: Any) -> bool: ...

    @abstractmethod
    def _to_numpy(self, value: Any) -> Any: ...

    @abstractmethod
    def _from_numpy(self, array: Any, record: dict[str, Any]) -> Any: ...

    def serialize(self, value: Any) -> tuple[Any, list[Endpoint]]:
        np = require_numpy(self.feature_name)
        array = np.ascontiguousarray(self._to_numpy(value))
        if array.dtype.hasobject:
            raise TypeError(f"Cannot transfer arrays of dtype {array.dtype}")
        record = {
            "dtype": array.dtype.str,
            "shape": list(array.shape),
            "data": array.tobytes(),
        }
        return self._annotate(value, record), []

    def _annotate(self, value: Any, record: dict[str, Any]) -> dict[str, Any]:
        return record

    def deserialize(self, value: Any, ports: list[Endpoint]) -> Any:
        np = require_numpy(self.feature_name)
        array = np.frombuffer(value["data"], dtype=np.dtype(value["dtype"]))
        # frombuffer returns a read-only view of the message bytes.
        array = array.reshape(value["shape"]).copy()
        return self._from_numpy(array, value)


class NdarrayTransferHandler(_ArrayTransferHandler):
    feature_name = "ndarray transfer"

    @override
    def can_handle(self, value: Any) -> bool:
        np = get_numpy_optional()
        return np is not None and isinstance(value, np.ndarray)

    @override
    def _to_numpy(self, value: Any) -> Any:
        return value

    @override
    def _from_numpy(self, array: Any, record: dict[str, Any]) -> Any:
        return array


class TensorTransferHandler(_ArrayTransferHandler):
    feature_name = "tensor transfer"

    @override
    def can_handle(self, value: Any) -> bool:
        torch = get_torch_optional()
        return torch is not None and isinstance(value, torch.Tensor)

    @override
    def _to_numpy(self, value: Any) -> Any:
        if value.is_cuda:
            logger.debug("Copying CUDA tensor of shape %s to the CPU for transfer", tuple(value.shape))
        return value.detach().cpu().numpy()

    @override
    def _annotate(self, value: Any, record: dict[str, Any]) -> dict[str, Any]:
        record["requires_grad"] = bool(value.requires_grad)
        return record

    @override
    def _from_numpy(self, array: Any, record: dict[str, Any]) -> Any:
        torch = require_torch(self.feature_name)
        tensor = torch.from_numpy(array)
        if record.get("requires_grad"):
            tensor.requires_grad_(True)
        return tensor


def register_array_handlers(registry: TransferHandlerRegistry | None = None) -> list[str]:
    """Register the array handlers whose libraries are importable.

    Returns the names that were registered.
    """
    if registry is None:
        registry = TransferHandlerRegistry.get_instance()
    registered = []
    if get_numpy_optional() is None:
        logger.debug("numpy not available; array handlers skipped")
        return registered
    registry.register("ndarray", NdarrayTransferHandler())
    registered.append("ndarray")
    if get_torch_optional() is not None:
        registry.register("tensor", TensorTransferHandler())
        registered.append("tensor")
    return registered
