"""
Backward evaluators (vector-Jacobian products).

Each rule receives the upstream gradient `g` of a node (same shape as the
node's output), the node's cached output, its operand values and its params,
and returns one gradient contribution per operand, shaped like that operand.

backward_by_operation() is the orchestrator: it checks the node, looks the
rule up in BACKWARD_RULES and adds every contribution into the operand's
gradient. Contributions are always added, never assigned, so a node that
feeds several consumers receives the sum of their gradients.
"""

from __future__ import annotations
import math
from typing import TYPE_CHECKING, Callable, Dict, Sequence, Tuple

import numpy as np

from .errors import GraphError, MissingGradientError, UnsupportedOperationError
from .ops import Op

if TYPE_CHECKING:
    from .tensor import Tensor


Grads = Tuple[np.ndarray, ...]
BackwardFn = Callable[..., Grads]


# =============================================================================
# Binary
# =============================================================================

def add_backward(g: np.ndarray, out: np.ndarray, a: np.ndarray, b: np.ndarray) -> Grads:
    # d(a + b)/da = d(a + b)/db = 1
    return g, g


def sub_backward(g: np.ndarray, out: np.ndarray, a: np.ndarray, b: np.ndarray) -> Grads:
    return g, -g


def matmul_backward(g: np.ndarray, out: np.ndarray, a: np.ndarray, b: np.ndarray) -> Grads:
    """da = g @ b^T, db = a^T @ g."""
    return g @ b.T, a.T @ g


def hadamard_backward(g: np.ndarray, out: np.ndarray, a: np.ndarray, b: np.ndarray) -> Grads:
    return g * b, g * a


# =============================================================================
# Unary
# =============================================================================

def exp_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray, base: float = 2.0) -> Grads:
    # d(b^x)/dx = b^x * ln(b); out already holds b^x
    return (g * out * out.dtype.type(math.log(base)),)


def sigmoid_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray) -> Grads:
    # out is the cached sigmoid(x)
    return (g * out * (1 - out),)


def tanh_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray) -> Grads:
    return (g * (1 - out * out),)


def log_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray, base: float = 2.0) -> Grads:
    return (g / (x * x.dtype.type(math.log(base))),)


def maximum_backward(
    g: np.ndarray, out: np.ndarray, x: np.ndarray, threshold: float = 0.0
) -> Grads:
    # ties (x == threshold) pass no gradient
    return (g * (x > threshold).astype(g.dtype),)


def softmax_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray) -> Grads:
    """
    Full row Jacobian of softmax.

    For one row s = softmax(x): ds_i/dx_j = s_i * (delta_ij - s_j), so
    dx_j = s_j * (g_j - sum_i g_i * s_i).
    """
    dot = (g * out).sum(axis=1, keepdims=True)
    return (out * (g - dot),)


# =============================================================================
# Reduce
# =============================================================================

def sum_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray) -> Grads:
    # every element contributed with weight 1
    return (np.full(x.shape, g[0, 0], dtype=g.dtype),)


def max_reduce_backward(g: np.ndarray, out: np.ndarray, x: np.ndarray) -> Grads:
    """Route the upstream scalar to the first maximal element."""
    grad = np.zeros(x.shape, dtype=g.dtype)
    grad[np.unravel_index(np.argmax(x), x.shape)] = g[0, 0]
    return (grad,)


BACKWARD_RULES: Dict[Op, BackwardFn] = {
    Op.ADD: add_backward,
    Op.SUB: sub_backward,
    Op.MUL: matmul_backward,
    Op.HADAMARD: hadamard_backward,
    Op.EXP: exp_backward,
    Op.SIGMOID: sigmoid_backward,
    Op.TANH: tanh_backward,
    Op.LOG: log_backward,
    Op.MAX: maximum_backward,
    Op.SOFTMAX: softmax_backward,
    Op.SUM: sum_backward,
    Op.MAX_REDUCE: max_reduce_backward,
}


def backward_by_operation(node: Tensor, operands: Sequence[Tensor]) -> None:
    """
    Push `node`'s gradient into its operands.

    Args:
        node: A non-leaf node whose gradient is already complete.
        operands: The node's operand tensors, in order.

    Raises:
        MissingGradientError: If the node has no gradient.
        GraphError: If the operand count does not match the op's arity.
        UnsupportedOperationError: If the op has no backward rule.
    """
    op = node.op
    rule = BACKWARD_RULES.get(op)
    if rule is None:
        raise UnsupportedOperationError(op.symbol, 'backward')
    if len(operands) != op.arity:
        raise GraphError(
            f"node {node.id} ({op}) expects {op.arity} operand(s), found {len(operands)}"
        )
    grad = node.get_gradient()
    if grad is None:
        raise MissingGradientError(node.id, op.symbol)

    contributions = rule(
        grad.matrix(),
        node.data,
        *(operand.data for operand in operands),
        **node.params
    )
    for operand, contribution in zip(operands, contributions):
        if operand.requires_grad:
            operand._accumulate_grad(contribution)
