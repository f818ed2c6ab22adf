"""
Shaped buffers: flat row-major storage plus a (rows, cols) shape.

A buffer knows nothing about graphs or gradients. Nodes hold one for their
value and, once backward has reached them, one for their gradient.
"""

from __future__ import annotations
from typing import Any, Tuple, Union

import numpy as np

from .device import Device
from .dtype import DTypeLike, resolve_dtype, to_array, to_scalar
from .errors import ShapeMismatchError


Shape = Tuple[int, int]


def check_shape(shape: Any) -> Shape:
    """
    Validate a (rows, cols) pair.

    Raises:
        ShapeMismatchError: If shape is not two non-negative integers.
    """
    try:
        rows, cols = shape
    except (TypeError, ValueError):
        raise ShapeMismatchError('shape', detail=f"expected (rows, cols), got {shape!r}") from None
    for n in (rows, cols):
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < 0:
            raise ShapeMismatchError(
                'shape', detail=f"dimensions must be non-negative integers, got {shape!r}"
            )
    return int(rows), int(cols)


class ShapedBuffer:
    """
    Row-major data with a 2-D shape and a device tag.

    The buffer owns a private copy of its data; views handed out by data()
    and matrix() are read-only, so the only ways to change contents are
    set_data() and set_dim().

    Example:
        >>> buf = ShapedBuffer([1, 2, 3, 4], (2, 2))
        >>> buf.matrix()
        array([[1., 2.],
               [3., 4.]])
    """

    __slots__ = ('_data', '_shape', 'device')

    def __init__(
        self,
        data: Any,
        shape: Shape,
        device: Union[Device, str, None] = None,
        dtype: DTypeLike = None
    ) -> None:
        """
        Args:
            data: Anything convertible to a flat numeric array.
            shape: (rows, cols); rows * cols must equal the element count.
            device: Device tag; defaults to the configured device.
            dtype: Element type; defaults to the configured dtype.

        Raises:
            ShapeMismatchError: If the element count does not match shape.
            NumericConversionError: If data is not numeric.
        """
        shape = check_shape(shape)
        arr = to_array(data, dtype)
        if arr.size != shape[0] * shape[1]:
            raise ShapeMismatchError(
                'buffer', shape,
                detail=f"{arr.size} elements cannot fill {shape[0]}x{shape[1]}"
            )
        self._data: np.ndarray = arr
        self._shape: Shape = shape
        self.device: Device = Device.parse(device)

    @classmethod
    def full(
        cls,
        shape: Shape,
        value: Any,
        device: Union[Device, str, None] = None,
        dtype: DTypeLike = None
    ) -> ShapedBuffer:
        """Buffer of the given shape with every element set to value."""
        shape = check_shape(shape)
        resolved = resolve_dtype(dtype)
        fill = to_scalar(value, resolved)
        return cls(np.full(shape[0] * shape[1], fill, dtype=resolved), shape, device, resolved)

    @classmethod
    def from_matrix(cls, matrix: np.ndarray, device: Union[Device, str, None] = None) -> ShapedBuffer:
        """Wrap a 2-D array, keeping its dtype."""
        if matrix.ndim != 2:
            raise ShapeMismatchError('buffer', matrix.shape, detail="expected a 2-D array")
        return cls(matrix.reshape(-1), matrix.shape, device, matrix.dtype)

    def __repr__(self) -> str:
        return (
            f"ShapedBuffer(shape={self._shape}, dtype={self.dtype.name}, "
            f"device={self.device})"
        )

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def size(self) -> int:
        return self._data.size

    def dim(self) -> Shape:
        """Return (rows, cols)."""
        return self._shape

    def data(self) -> np.ndarray:
        """Read-only flat view of the contents."""
        view = self._data.view()
        view.flags.writeable = False
        return view

    def matrix(self) -> np.ndarray:
        """Read-only (rows, cols) view of the contents."""
        view = self._data.reshape(self._shape)
        view.flags.writeable = False
        return view

    def set_data(self, new_data: Any) -> None:
        """
        Replace the contents, keeping shape, dtype and device.

        Raises:
            ShapeMismatchError: If the element count changes.
        """
        arr = to_array(new_data, self.dtype)
        if arr.size != self._data.size:
            raise ShapeMismatchError(
                'set_data', self._shape,
                detail=f"got {arr.size} elements, need {self._data.size}"
            )
        self._data = arr

    def set_dim(self, new_shape: Shape) -> None:
        """
        Reinterpret the same data under a new shape.

        Raises:
            ShapeMismatchError: If the element count would change.
        """
        new_shape = check_shape(new_shape)
        if new_shape[0] * new_shape[1] != self._data.size:
            raise ShapeMismatchError('set_dim', self._shape, new_shape)
        self._shape = new_shape

    def copy(self) -> ShapedBuffer:
        return ShapedBuffer(self._data, self._shape, self.device, self.dtype)
