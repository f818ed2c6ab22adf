"""
Tensor: A Matrix Node in the Computation Graph
==============================================

A Tensor is a 2-D matrix (1x1 for scalars) that remembers how it was made.
Every operation between tensors builds a new node on a Graph, recording the
operation tag and the ids of its operands. Calling backward() on the result
walks that graph in reverse and fills in each node's gradient via the chain
rule.

    >>> w = Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
    >>> x = Tensor([[1.0], [1.0]])
    >>> loss = (w @ x).sigmoid().sum()
    >>> loss.backward()
    >>> w.grad.shape
    (2, 2)

`*` between two tensors is the matrix product, the same as `@`. Use
hadamard() for the elementwise product.
"""

from __future__ import annotations
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .buffer import Shape, ShapedBuffer, check_shape
from .config import get_config
from .device import Device
from .dtype import DTypeLike, to_scalar
from .errors import GraphError, NumericConversionError, ShapeMismatchError
from .forward import evaluate
from .graph import Graph, get_default_graph, is_grad_enabled
from .logger import get_logger
from .ops import Op


logger = get_logger(__name__)

Scalar = Union[int, float, np.floating]
Operand = Union['Tensor', Scalar]

_rng: Optional[np.random.Generator] = None


def manual_seed(seed: Optional[int]) -> None:
    """Reseed the generator behind Tensor.rand() and Tensor.uniform()."""
    global _rng
    _rng = np.random.default_rng(seed)


def _default_rng() -> np.random.Generator:
    global _rng
    if _rng is None:
        _rng = np.random.default_rng(get_config().seed)
    return _rng


def _infer_shape(data: Any) -> Shape:
    try:
        probe = np.asarray(data)
    except (TypeError, ValueError) as exc:
        raise NumericConversionError(f"Cannot read tensor data: {exc}") from exc
    if probe.ndim == 0:
        return (1, 1)
    if probe.ndim == 1:
        return (1, probe.shape[0])
    if probe.ndim == 2:
        return probe.shape
    raise ShapeMismatchError(
        'tensor', probe.shape, detail="only scalars and 1-D/2-D data are supported"
    )


class Tensor:
    """
    A node of the computation graph holding a 2-D value.

    Attributes:
        op: Operation that produced this node (Op.NONE for leaves).
        params: Scalar settings of op (threshold, base).
        operand_ids: Ids of the operand nodes, in order.
        graph: Graph this node belongs to.
        id: Unique id within the graph.
        label: Optional name for debugging and visualization.
    """

    __slots__ = (
        '_buffer', '_grad', '_requires_grad',
        'op', 'params', '_operands', 'operand_ids', 'graph', 'id', 'label',
        '__weakref__'
    )

    def __init__(
        self,
        data: Any,
        shape: Optional[Shape] = None,
        device: Union[Device, str, None] = None,
        requires_grad: bool = False,
        dtype: DTypeLike = None,
        label: str = '',
        graph: Optional[Graph] = None
    ) -> None:
        """
        Create a leaf tensor.

        Args:
            data: Scalar, 1-D or 2-D numeric data, or a ShapedBuffer.
            shape: (rows, cols) to lay flat data out in. Inferred when
                omitted: scalar -> (1, 1), 1-D -> (1, n).
            device: Device tag; defaults to the configured device.
            requires_grad: Whether backward should compute this tensor's gradient.
            dtype: Element type; defaults to the configured dtype.
            label: Optional name for debugging.
            graph: Graph to join; defaults to the current default graph.

        Raises:
            ShapeMismatchError: If data does not fit shape.
            NumericConversionError: If data is not numeric.
        """
        if isinstance(data, ShapedBuffer):
            buffer = ShapedBuffer(
                data.data(),
                shape if shape is not None else data.shape,
                device if device is not None else data.device,
                dtype if dtype is not None else data.dtype
            )
        else:
            if shape is None:
                shape = _infer_shape(data)
            buffer = ShapedBuffer(data, shape, device, dtype)
        self._attach(buffer, bool(requires_grad), Op.NONE, {}, (), graph, label)

    def _attach(
        self,
        buffer: ShapedBuffer,
        requires_grad: bool,
        op: Op,
        params: Dict[str, float],
        operands: Tuple[Tensor, ...],
        graph: Optional[Graph],
        label: str
    ) -> None:
        self._buffer = buffer
        self._grad: Optional[ShapedBuffer] = None
        self._requires_grad = requires_grad
        self.op = op
        self.params = params
        self._operands = operands
        self.operand_ids = tuple(o.id for o in operands)
        self.graph = graph if graph is not None else get_default_graph()
        self.label = label
        self.id = self.graph.register(self, self.operand_ids)

    @classmethod
    def _from_op(
        cls,
        op: Op,
        operands: Sequence[Tensor],
        params: Optional[Dict[str, float]] = None
    ) -> Tensor:
        graph = operands[0].graph
        for operand in operands[1:]:
            if operand.graph is not graph:
                raise GraphError(
                    f"{op.symbol}: operands belong to different graphs "
                    f"({graph!r} vs {operand.graph!r})"
                )
        params = dict(params or {})
        buffer = evaluate(op, [o._buffer for o in operands], params)

        out = cls.__new__(cls)
        if is_grad_enabled():
            requires_grad = any(o.requires_grad for o in operands)
            out._attach(buffer, requires_grad, op, params, tuple(operands), graph, '')
            logger.debug(
                "node %d = %s(%s) shape=%s",
                out.id, op.symbol, ', '.join(str(o.id) for o in operands), out.shape
            )
        else:
            out._attach(buffer, False, Op.NONE, {}, (), graph, '')
        return out

    def __repr__(self) -> str:
        name = f"{self.label}, " if self.label else ''
        grad = 'None' if self._grad is None else 'set'
        return (
            f"Tensor({name}shape={self.shape}, op={self.op.symbol}, "
            f"requires_grad={self._requires_grad}, grad={grad})"
        )

    # =========================================================================
    # Leaf Constructors
    # =========================================================================

    @classmethod
    def from_data(
        cls,
        data: Any,
        shape: Optional[Shape] = None,
        device: Union[Device, str, None] = None,
        requires_grad: bool = False,
        **kwargs
    ) -> Tensor:
        """Leaf from explicit data; same as calling Tensor(...)."""
        return cls(data, shape, device, requires_grad, **kwargs)

    @classmethod
    def full(
        cls,
        shape: Shape,
        value: Scalar,
        device: Union[Device, str, None] = None,
        requires_grad: bool = False,
        **kwargs
    ) -> Tensor:
        """Leaf with every element equal to value."""
        dtype = kwargs.pop('dtype', None)
        buffer = ShapedBuffer.full(shape, value, device, dtype)
        return cls(buffer, requires_grad=requires_grad, **kwargs)

    @classmethod
    def zeros(cls, shape: Shape, device=None, requires_grad: bool = False, **kwargs) -> Tensor:
        return cls.full(shape, 0.0, device, requires_grad, **kwargs)

    @classmethod
    def ones(cls, shape: Shape, device=None, requires_grad: bool = False, **kwargs) -> Tensor:
        return cls.full(shape, 1.0, device, requires_grad, **kwargs)

    @classmethod
    def full_like(cls, other: Tensor, value: Scalar, **kwargs) -> Tensor:
        """Leaf shaped like `other`, inheriting its device, dtype, graph and requires_grad."""
        kwargs.setdefault('requires_grad', other.requires_grad)
        kwargs.setdefault('dtype', other.dtype)
        kwargs.setdefault('graph', other.graph)
        return cls.full(other.shape, value, other.device, **kwargs)

    @classmethod
    def zeros_like(cls, other: Tensor, **kwargs) -> Tensor:
        return cls.full_like(other, 0.0, **kwargs)

    @classmethod
    def ones_like(cls, other: Tensor, **kwargs) -> Tensor:
        return cls.full_like(other, 1.0, **kwargs)

    @classmethod
    def scalar(cls, value: Scalar, requires_grad: bool = False, **kwargs) -> Tensor:
        """1x1 leaf; the scalar case of the engine."""
        return cls.full((1, 1), value, requires_grad=requires_grad, **kwargs)

    @classmethod
    def eye(cls, n: int, value: Scalar = 1.0, **kwargs) -> Tensor:
        """n x n leaf with `value` on the diagonal and zeros elsewhere."""
        out = cls.zeros((n, n), **kwargs)
        out.fill_diagonal(value)
        return out

    @classmethod
    def rand(
        cls,
        shape: Shape,
        device: Union[Device, str, None] = None,
        requires_grad: bool = False,
        rng: Optional[np.random.Generator] = None,
        **kwargs
    ) -> Tensor:
        """Leaf with values drawn uniformly from [0, 1)."""
        return cls.uniform(shape, 0.0, 1.0, device, requires_grad, rng=rng, **kwargs)

    @classmethod
    def uniform(
        cls,
        shape: Shape,
        low: Scalar,
        high: Scalar,
        device: Union[Device, str, None] = None,
        requires_grad: bool = False,
        rng: Optional[np.random.Generator] = None,
        **kwargs
    ) -> Tensor:
        """
        Leaf with values drawn uniformly from [low, high).

        Args:
            rng: Generator to draw from; defaults to the package generator
                (seeded by NANOGRAD_SEED or manual_seed()).

        Raises:
            ValueError: If low > high.
        """
        rows, cols = check_shape(shape)
        low, high = float(to_scalar(low)), float(to_scalar(high))
        if low > high:
            raise ValueError(f"uniform: low ({low}) must not exceed high ({high})")
        rng = rng if rng is not None else _default_rng()
        values = rng.uniform(low, high, size=rows * cols)
        return cls(values, (rows, cols), device, requires_grad, **kwargs)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def shape(self) -> Shape:
        return self._buffer.shape

    def dim(self) -> Shape:
        """Return (rows, cols)."""
        return self._buffer.dim()

    @property
    def data(self) -> np.ndarray:
        """Read-only (rows, cols) view of the value."""
        return self._buffer.matrix()

    @property
    def dtype(self) -> np.dtype:
        return self._buffer.dtype

    @property
    def device(self) -> Device:
        return self._buffer.device

    @property
    def requires_grad(self) -> bool:
        return self._requires_grad

    @property
    def is_leaf(self) -> bool:
        return self.op.is_leaf

    @property
    def operands(self) -> List[Tensor]:
        """Operand nodes, in order; a node keeps its operands alive."""
        return list(self._operands)

    @property
    def grad(self) -> Optional[np.ndarray]:
        """Read-only (rows, cols) view of the gradient, or None before backward."""
        return None if self._grad is None else self._grad.matrix()

    def get_gradient(self) -> Optional[ShapedBuffer]:
        return self._grad

    def numpy(self) -> np.ndarray:
        """Writable copy of the value."""
        return np.array(self.data)

    def item(self) -> float:
        """
        Value of a 1x1 tensor as a Python float.

        Raises:
            ShapeMismatchError: If the tensor is not 1x1.
        """
        if self.shape != (1, 1):
            raise ShapeMismatchError('item', self.shape, detail="only 1x1 tensors convert to a scalar")
        return float(self._buffer.data()[0])

    # =========================================================================
    # Gradients
    # =========================================================================

    def backward(self) -> None:
        """
        Compute gradients of this tensor with respect to every node it depends on.

        The seed is a ones-matrix of this tensor's shape, so for a 1x1 loss
        each leaf ends up holding dLoss/dLeaf. Leaf gradients ACCUMULATE
        across calls; clear them (Module.zero_grad, SGD.zero_grad or
        clear_gradient) between training steps.

        Example:
            >>> x = Tensor([[1.0, 2.0]], requires_grad=True)
            >>> x.sum().backward()
            >>> x.grad
            array([[1., 1.]])
        """
        self.graph.backward(self)

    def clear_gradient(self) -> None:
        """Forget the gradient; the next backward starts from zero."""
        self._grad = None

    def _set_gradient(self, values: np.ndarray) -> None:
        self._grad = None
        self._accumulate_grad(values)

    def _accumulate_grad(self, contribution: np.ndarray) -> None:
        contribution = np.asarray(contribution)
        if contribution.shape != self.shape:
            raise GraphError(
                f"node {self.id}: gradient of shape {contribution.shape} "
                f"does not match value shape {self.shape}"
            )
        if self._grad is None:
            self._grad = ShapedBuffer(contribution.reshape(-1), self.shape, self.device, self.dtype)
        else:
            self._grad.set_data(self._grad.matrix() + contribution)

    def adjust(self, factor: Scalar) -> None:
        """
        In-place update data += factor * grad; adjust(-lr) is a gradient step.

        Does nothing when the tensor has no gradient yet.

        Raises:
            GraphError: If called on a non-leaf tensor.
        """
        self._require_leaf('adjust')
        if self._grad is None:
            return
        step = self.dtype.type(to_scalar(factor)) * self._grad.matrix()
        self._buffer.set_data(self._buffer.matrix() + step)

    def set_data(self, values: Any) -> None:
        """
        Overwrite the value of a leaf, keeping its shape.

        Raises:
            GraphError: If called on a non-leaf tensor.
            ShapeMismatchError: If the element count differs.
        """
        self._require_leaf('set_data')
        self._buffer.set_data(values)

    def _require_leaf(self, what: str) -> None:
        if not self.is_leaf:
            raise GraphError(f"{what}: node {self.id} ({self.op}) is not a leaf")

    def _require_unconsumed_leaf(self, what: str) -> None:
        self._require_leaf(what)
        consumers = self.graph.fan_out(self.id)
        if consumers:
            raise GraphError(
                f"{what}: node {self.id} already feeds {consumers} operation(s); "
                f"reshaping it would invalidate their gradients"
            )

    # =========================================================================
    # Shape Transforms (in place)
    # =========================================================================

    def transpose(self) -> Tensor:
        """
        Swap rows and columns in place; returns self for chaining.

        Example:
            >>> t = Tensor([1.0, 2.0, 3.0, 4.0], (2, 2))
            >>> t.transpose().data.reshape(-1)
            array([1., 3., 2., 4.])

        Raises:
            GraphError: If the tensor is not a leaf or already has consumers.
        """
        self._require_unconsumed_leaf('transpose')
        self._buffer = ShapedBuffer.from_matrix(self._buffer.matrix().T, self.device)
        if self._grad is not None:
            self._grad = ShapedBuffer.from_matrix(self._grad.matrix().T, self.device)
        return self

    def flatten(self) -> Tensor:
        """Reinterpret as 1 x (rows * cols) in place; returns self."""
        self._require_unconsumed_leaf('flatten')
        flat = (1, self._buffer.size)
        self._buffer.set_dim(flat)
        if self._grad is not None:
            self._grad.set_dim(flat)
        return self

    def fill_diagonal(self, value: Scalar) -> Tensor:
        """
        Replace the value with a matrix holding `value` on the main diagonal
        and zeros everywhere else, keeping the shape; returns self.
        """
        self._require_unconsumed_leaf('fill_diagonal')
        fill = to_scalar(value, self.dtype)
        rows, cols = self.shape
        new = np.zeros((rows, cols), dtype=self.dtype)
        np.fill_diagonal(new, fill)
        self._buffer.set_data(new)
        return self

    # =========================================================================
    # Graph-building Operations
    # =========================================================================

    def _constant(self, value: Scalar, shape: Optional[Shape] = None) -> Tensor:
        return Tensor.full(
            shape if shape is not None else self.shape,
            to_scalar(value, self.dtype),
            self.device,
            dtype=self.dtype,
            graph=self.graph
        )

    def add(self, other: Operand) -> Tensor:
        """Elementwise sum; a bare scalar is broadcast to a constant full tensor."""
        if not isinstance(other, Tensor):
            other = self._constant(other)
        return Tensor._from_op(Op.ADD, (self, other))

    def sub(self, other: Operand) -> Tensor:
        """Elementwise difference; a bare scalar is broadcast like add()."""
        if not isinstance(other, Tensor):
            other = self._constant(other)
        return Tensor._from_op(Op.SUB, (self, other))

    def matmul(self, other: Tensor) -> Tensor:
        """
        Matrix product (m x k) @ (k x n) -> (m x n).

        Raises:
            ShapeMismatchError: If self.cols != other.rows.
        """
        if not isinstance(other, Tensor):
            raise NumericConversionError(
                f"matmul expects a Tensor, got {type(other).__name__}; use mul() for scalars"
            )
        return Tensor._from_op(Op.MUL, (self, other))

    def mul(self, other: Operand) -> Tensor:
        """
        Matrix product with a tensor, or scaling by a bare scalar.

        A scalar c is applied as self @ (c * I), with I of size cols x cols,
        so scaling stays inside the matrix-product rule.
        """
        if isinstance(other, Tensor):
            return self.matmul(other)
        cols = self.shape[1]
        diagonal = Tensor.eye(cols, to_scalar(other, self.dtype), device=self.device,
                              dtype=self.dtype, graph=self.graph)
        return Tensor._from_op(Op.MUL, (self, diagonal))

    def hadamard(self, other: Tensor) -> Tensor:
        """Elementwise product of equally shaped tensors."""
        if not isinstance(other, Tensor):
            raise NumericConversionError(
                f"hadamard expects a Tensor, got {type(other).__name__}; use mul() for scalars"
            )
        return Tensor._from_op(Op.HADAMARD, (self, other))

    def exp(self, base: float = math.e) -> Tensor:
        """Elementwise base ** self."""
        return Tensor._from_op(Op.EXP, (self,), {'base': float(base)})

    def exp2(self) -> Tensor:
        return self.exp(2.0)

    def log(self, base: float = math.e) -> Tensor:
        """
        Elementwise logarithm.

        Raises:
            DomainError: If any element is non-positive.
        """
        return Tensor._from_op(Op.LOG, (self,), {'base': float(base)})

    def log2(self) -> Tensor:
        return self.log(2.0)

    def sigmoid(self) -> Tensor:
        return Tensor._from_op(Op.SIGMOID, (self,))

    def tanh(self) -> Tensor:
        return Tensor._from_op(Op.TANH, (self,))

    def maximum(self, threshold: Scalar) -> Tensor:
        """Elementwise max(self, threshold)."""
        return Tensor._from_op(Op.MAX, (self,), {'threshold': float(to_scalar(threshold))})

    def relu(self) -> Tensor:
        return self.maximum(0.0)

    def softmax(self) -> Tensor:
        """Softmax over each row."""
        return Tensor._from_op(Op.SOFTMAX, (self,))

    def sum(self) -> Tensor:
        """Sum of all elements as a 1x1 tensor."""
        return Tensor._from_op(Op.SUM, (self,))

    def max(self) -> Tensor:
        """Largest element as a 1x1 tensor; its gradient goes to the first maximum."""
        return Tensor._from_op(Op.MAX_REDUCE, (self,))

    # =========================================================================
    # Operators
    # =========================================================================

    def __add__(self, other: Operand) -> Tensor:
        return self.add(other)

    def __radd__(self, other: Scalar) -> Tensor:
        return self._constant(other).add(self)

    def __sub__(self, other: Operand) -> Tensor:
        return self.sub(other)

    def __rsub__(self, other: Scalar) -> Tensor:
        return self._constant(other).sub(self)

    def __mul__(self, other: Operand) -> Tensor:
        return self.mul(other)

    def __rmul__(self, other: Scalar) -> Tensor:
        return self.mul(other)

    def __matmul__(self, other: Tensor) -> Tensor:
        return self.matmul(other)

    def __neg__(self) -> Tensor:
        return self.mul(-1.0)


# =============================================================================
# Functional API
# =============================================================================

from_data = Tensor.from_data
full = Tensor.full
zeros = Tensor.zeros
ones = Tensor.ones
full_like = Tensor.full_like
zeros_like = Tensor.zeros_like
ones_like = Tensor.ones_like
rand = Tensor.rand
uniform = Tensor.uniform


def add(a: Tensor, b: Operand) -> Tensor:
    return a.add(b)


def sub(a: Tensor, b: Operand) -> Tensor:
    return a.sub(b)


def mul(a: Tensor, b: Operand) -> Tensor:
    return a.mul(b)


def matmul(a: Tensor, b: Tensor) -> Tensor:
    return a.matmul(b)
