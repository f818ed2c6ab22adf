"""
Device tags.

Every buffer carries a device tag, but all arithmetic runs on NumPy. The tag
exists so operands from different devices are rejected instead of being
silently mixed.
"""

from __future__ import annotations
import re
from enum import Enum
from typing import Optional, Union

from .config import get_config
from .errors import DeviceMismatchError


_CUDA_PATTERN = re.compile(r"^cuda(:\d+)?$")


class Device(Enum):
    """Computation device tag."""

    CPU = 'cpu'
    CUDA = 'cuda'

    @classmethod
    def parse(cls, device: Union[Device, str, None] = None) -> Device:
        """
        Normalize a device specification.

        Args:
            device: A Device, a string such as "cpu", "cuda" or "cuda:0",
                or None for the configured default.

        Raises:
            ValueError: If the string names no known device.
        """
        if isinstance(device, Device):
            return device
        if device is None:
            device = get_config().device
        if not isinstance(device, str):
            raise ValueError(f"Device must be a string, got {type(device).__name__}")
        name = device.strip().lower()
        if name == 'cpu':
            return cls.CPU
        if _CUDA_PATTERN.match(name):
            return cls.CUDA
        raise ValueError(f"Unsupported device string: {device!r}")

    def __str__(self) -> str:
        return self.value


def default_device() -> Device:
    """Device tag given to tensors created without an explicit device."""
    return Device.parse(None)


def same_device(op: str, *devices: Device) -> Device:
    """
    Check that all operands share a device and return it.

    Raises:
        DeviceMismatchError: On the first disagreeing pair.
    """
    first: Optional[Device] = None
    for device in devices:
        if first is None:
            first = device
        elif device is not first:
            raise DeviceMismatchError(op, str(first), str(device))
    return first if first is not None else default_device()
