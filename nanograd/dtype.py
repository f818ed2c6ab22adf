"""
Element types.

The engine is generic over floating scalars. NumPy's floating dtypes already
supply everything the math needs (identities, ordering, arithmetic, pow,
conversion to and from float64), so this module only decides which dtypes
are allowed and converts user input into them.
"""

from __future__ import annotations
from numbers import Number
from typing import Any, Optional, Union

import numpy as np

from .config import get_config
from .errors import NumericConversionError


SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))

DTypeLike = Union[str, np.dtype, type, None]


def resolve_dtype(dtype: DTypeLike = None) -> np.dtype:
    """
    Normalize a dtype specification.

    Args:
        dtype: None for the configured default, or anything np.dtype accepts.

    Returns:
        One of SUPPORTED_DTYPES.

    Raises:
        NumericConversionError: If the dtype is unknown or not a supported float.
    """
    if dtype is None:
        dtype = get_config().dtype
    try:
        resolved = np.dtype(dtype)
    except TypeError as exc:
        raise NumericConversionError(f"Unknown dtype: {dtype!r}") from exc
    if resolved not in SUPPORTED_DTYPES:
        names = ', '.join(d.name for d in SUPPORTED_DTYPES)
        raise NumericConversionError(
            f"Unsupported dtype {resolved.name}; expected one of {names}"
        )
    return resolved


def zero(dtype: DTypeLike = None) -> np.floating:
    """Additive identity of the element type."""
    return resolve_dtype(dtype).type(0)


def one(dtype: DTypeLike = None) -> np.floating:
    """Multiplicative identity of the element type."""
    return resolve_dtype(dtype).type(1)


def to_scalar(value: Any, dtype: DTypeLike = None) -> np.floating:
    """
    Convert a single number to the element type.

    Raises:
        NumericConversionError: If value is not a real number.
    """
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (Number, np.number)):
        raise NumericConversionError(
            f"Expected a real number, got {type(value).__name__}"
        )
    if isinstance(value, complex) or np.iscomplexobj(value):
        raise NumericConversionError(f"Complex values are not supported: {value!r}")
    return resolve_dtype(dtype).type(value)


def to_array(data: Any, dtype: DTypeLike = None) -> np.ndarray:
    """
    Convert nested numeric data to a fresh flat array of the element type.

    Raises:
        NumericConversionError: If any element is not numeric.
    """
    resolved = resolve_dtype(dtype)
    try:
        probe = np.asarray(data)
    except (TypeError, ValueError) as exc:
        raise NumericConversionError(
            f"Cannot convert {type(data).__name__} to {resolved.name}: {exc}"
        ) from exc
    # 'b' admits bools; 'c' (complex) and object/str arrays are rejected
    if probe.dtype.kind not in 'biuf':
        raise NumericConversionError(
            f"Cannot convert data of dtype {probe.dtype} to {resolved.name}"
        )
    return np.array(probe, dtype=resolved, copy=True).reshape(-1)
