"""
Operation taxonomy.

A closed set of operation tags. The tag alone says how many operands a node
has; scalar settings an operation needs (a threshold, a base) are stored on
the node as params.
"""

from __future__ import annotations
from enum import Enum


class OpKind(Enum):
    NONE = 'none'
    BINARY = 'binary'
    UNARY = 'unary'
    REDUCE = 'reduce'


_ARITY = {
    OpKind.NONE: 0,
    OpKind.BINARY: 2,
    OpKind.UNARY: 1,
    OpKind.REDUCE: 1,
}


class Op(Enum):
    """
    Operation that produced a node.

    Binary:
        ADD, SUB: elementwise, equal shapes.
        MUL: matrix product (m x k) @ (k x n).
        HADAMARD: elementwise product, equal shapes.
    Unary (shape preserving):
        EXP: base ** x, base from params (2 on the exp2 path).
        SIGMOID, TANH: elementwise activations.
        LOG: log_base(x), base from params (2 on the log2 path).
        MAX: max(x, threshold), threshold from params.
        SOFTMAX: row-wise softmax.
    Reduce (to 1 x 1):
        SUM, MAX_REDUCE.
    NONE marks a leaf.
    """

    NONE = ('none', OpKind.NONE)

    ADD = ('add', OpKind.BINARY)
    SUB = ('sub', OpKind.BINARY)
    MUL = ('matmul', OpKind.BINARY)
    HADAMARD = ('hadamard', OpKind.BINARY)

    EXP = ('exp', OpKind.UNARY)
    SIGMOID = ('sigmoid', OpKind.UNARY)
    TANH = ('tanh', OpKind.UNARY)
    LOG = ('log', OpKind.UNARY)
    MAX = ('max', OpKind.UNARY)
    SOFTMAX = ('softmax', OpKind.UNARY)

    SUM = ('sum', OpKind.REDUCE)
    MAX_REDUCE = ('max_reduce', OpKind.REDUCE)

    def __init__(self, symbol: str, kind: OpKind) -> None:
        self.symbol = symbol
        self.kind = kind

    @property
    def arity(self) -> int:
        """Number of operands a node with this op has."""
        return _ARITY[self.kind]

    @property
    def is_leaf(self) -> bool:
        return self.kind is OpKind.NONE

    def __str__(self) -> str:
        return self.symbol
