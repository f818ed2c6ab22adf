"""
Forward evaluators.

One pure function per operation: operand buffers in, a new buffer out.
Operands are never mutated. evaluate() is the single dispatch point used
when a node is built.
"""

from __future__ import annotations
import math
from typing import Callable, Dict, Sequence

import numpy as np

from .buffer import ShapedBuffer
from .device import same_device
from .errors import DomainError, ShapeMismatchError, UnsupportedOperationError
from .ops import Op


ForwardFn = Callable[..., ShapedBuffer]


def _wrap(result: np.ndarray, like: ShapedBuffer) -> ShapedBuffer:
    return ShapedBuffer.from_matrix(np.asarray(result), like.device)


def _require_same_shape(op: Op, a: ShapedBuffer, b: ShapedBuffer) -> None:
    if a.shape != b.shape:
        raise ShapeMismatchError(op.symbol, a.shape, b.shape, detail="shapes must be equal")


def _check_base(op: Op, base: float) -> None:
    if not base > 0 or base == 1:
        raise DomainError(f"{op.symbol}: base must be positive and not 1, got {base}")


# =============================================================================
# Binary
# =============================================================================

def add(a: ShapedBuffer, b: ShapedBuffer) -> ShapedBuffer:
    _require_same_shape(Op.ADD, a, b)
    return _wrap(a.matrix() + b.matrix(), a)


def sub(a: ShapedBuffer, b: ShapedBuffer) -> ShapedBuffer:
    _require_same_shape(Op.SUB, a, b)
    return _wrap(a.matrix() - b.matrix(), a)


def matmul(a: ShapedBuffer, b: ShapedBuffer) -> ShapedBuffer:
    """
    Matrix product: out[i, j] = sum_k a[i, k] * b[k, j].

    Raises:
        ShapeMismatchError: If a.cols != b.rows.
    """
    if a.shape[1] != b.shape[0]:
        raise ShapeMismatchError(
            Op.MUL.symbol, a.shape, b.shape,
            detail=f"inner dimensions {a.shape[1]} and {b.shape[0]} differ"
        )
    return _wrap(a.matrix() @ b.matrix(), a)


def hadamard(a: ShapedBuffer, b: ShapedBuffer) -> ShapedBuffer:
    _require_same_shape(Op.HADAMARD, a, b)
    return _wrap(a.matrix() * b.matrix(), a)


# =============================================================================
# Unary
# =============================================================================

def exp(x: ShapedBuffer, base: float = 2.0) -> ShapedBuffer:
    """Elementwise base ** x."""
    _check_base(Op.EXP, base)
    m = x.matrix()
    return _wrap(np.power(m.dtype.type(base), m), x)


def sigmoid(x: ShapedBuffer) -> ShapedBuffer:
    """
    Elementwise e^x / (1 + e^x).

    Evaluated as 1 / (1 + e^-x) for x >= 0 and e^x / (1 + e^x) otherwise, so
    neither branch ever exponentiates a large positive number.
    """
    m = x.matrix()
    out = np.empty_like(m)
    pos = m >= 0
    out[pos] = 1 / (1 + np.exp(-m[pos]))
    e = np.exp(m[~pos])
    out[~pos] = e / (1 + e)
    return _wrap(out, x)


def tanh(x: ShapedBuffer) -> ShapedBuffer:
    return _wrap(np.tanh(x.matrix()), x)


def log(x: ShapedBuffer, base: float = 2.0) -> ShapedBuffer:
    """
    Elementwise logarithm in the given base.

    Raises:
        DomainError: If any element is non-positive.
    """
    _check_base(Op.LOG, base)
    m = x.matrix()
    if np.any(m <= 0):
        raise DomainError(f"log undefined for non-positive values: min={m.min()}")
    return _wrap(np.log(m) / m.dtype.type(math.log(base)), x)


def maximum(x: ShapedBuffer, threshold: float = 0.0) -> ShapedBuffer:
    """Elementwise max(x, threshold); threshold 0 is ReLU."""
    m = x.matrix()
    return _wrap(np.maximum(m, m.dtype.type(threshold)), x)


def softmax(x: ShapedBuffer) -> ShapedBuffer:
    """Row-wise exp(x_ij) / sum_j exp(x_ij)."""
    m = x.matrix()
    if m.size == 0:
        return _wrap(m.copy(), x)
    shifted = np.exp(m - m.max(axis=1, keepdims=True))
    return _wrap(shifted / shifted.sum(axis=1, keepdims=True), x)


# =============================================================================
# Reduce
# =============================================================================

def reduce_sum(x: ShapedBuffer) -> ShapedBuffer:
    m = x.matrix()
    return ShapedBuffer([m.sum()], (1, 1), x.device, x.dtype)


def reduce_max(x: ShapedBuffer) -> ShapedBuffer:
    """Largest element as a 1x1 buffer."""
    if x.size == 0:
        raise ShapeMismatchError(Op.MAX_REDUCE.symbol, x.shape, detail="empty buffer has no maximum")
    return ShapedBuffer([x.matrix().max()], (1, 1), x.device, x.dtype)


FORWARD_RULES: Dict[Op, ForwardFn] = {
    Op.ADD: add,
    Op.SUB: sub,
    Op.MUL: matmul,
    Op.HADAMARD: hadamard,
    Op.EXP: exp,
    Op.SIGMOID: sigmoid,
    Op.TANH: tanh,
    Op.LOG: log,
    Op.MAX: maximum,
    Op.SOFTMAX: softmax,
    Op.SUM: reduce_sum,
    Op.MAX_REDUCE: reduce_max,
}


def evaluate(op: Op, operands: Sequence[ShapedBuffer], params: Dict[str, float] = None) -> ShapedBuffer:
    """
    Compute the output buffer of `op` applied to `operands`.

    Args:
        op: Operation tag.
        operands: Operand buffers, in order.
        params: Scalar settings of the op (threshold, base).

    Returns:
        A new buffer; operands are left untouched.

    Raises:
        UnsupportedOperationError: If op has no forward rule or the operand
            count does not match its arity.
        ShapeMismatchError: If operand shapes violate the op's shape rule.
        DeviceMismatchError: If operands live on different devices.
    """
    rule = FORWARD_RULES.get(op)
    if rule is None:
        raise UnsupportedOperationError(op.symbol, 'forward')
    if len(operands) != op.arity:
        raise UnsupportedOperationError(
            f"{op.symbol} with {len(operands)} operand(s)", 'forward'
        )
    same_device(op.symbol, *(b.device for b in operands))
    return rule(*operands, **(params or {}))
