"""
Neural Network Module
=====================

PyTorch-like building blocks on top of the tensor graph. Nothing here adds
new operations; every layer is a composition of matmul, add and the
activations the engine already differentiates.

This module provides:
- Module: Base class for all neural network components
- Linear: Fully connected layer, y = x @ W + b
- MLP: Multi-layer perceptron (stack of Linear layers)
- mse_loss: Mean squared error
- log_softmax, categorical_cross_entropy: Classification loss
- SGD, Adam: Optimizers

Typical training step:

    >>> model = MLP(3, [4, 1])
    >>> opt = SGD(model.parameters(), lr=0.05)
    >>> loss = mse_loss(model(x), y)
    >>> opt.zero_grad()
    >>> loss.backward()
    >>> opt.step()
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence

import numpy as np

from .errors import ShapeMismatchError
from .graph import Graph
from .tensor import Tensor


ACTIVATIONS = ('relu', 'tanh', 'sigmoid')


class Module:
    """
    Base class for all neural network modules.

    Subclasses implement forward() and parameters(); calling the module
    runs forward().
    """

    def parameters(self) -> List[Tensor]:
        """
        Return all trainable parameters in this module.

        Override this in subclasses to return the module's parameters.
        """
        return []

    def zero_grad(self) -> None:
        """
        Reset gradients of all parameters.

        Call this before each backward pass to prevent gradient accumulation.
        """
        for p in self.parameters():
            p.clear_gradient()

    def forward(self, x: Tensor) -> Tensor:
        raise NotImplementedError

    def __call__(self, x: Tensor) -> Tensor:
        return self.forward(x)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Linear(Module):
    """
    Fully connected layer: y = x @ W + b.

    x has one sample per row, shape (n, nin); W is (nin, nout) and b is
    (1, nout). The bias is added to every row as ones(n, 1) @ b, which keeps
    the broadcast inside the matrix-product rule.

    Attributes:
        weight: (nin, nout) parameter.
        bias: (1, nout) parameter, or None.

    Example:
        >>> layer = Linear(3, 2)
        >>> layer(Tensor.ones((5, 3))).shape
        (5, 2)
    """

    def __init__(
        self,
        nin: int,
        nout: int,
        bias: bool = True,
        graph: Optional[Graph] = None,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        """
        Args:
            nin: Number of input features.
            nout: Number of output features.
            bias: Whether to learn an additive bias.
            graph: Graph for the parameters; defaults to the default graph.
            rng: Generator for weight initialization.
        """
        # He-style scale keeps activations from shrinking layer to layer
        scale = (2.0 / nin) ** 0.5
        self.weight: Tensor = Tensor.uniform(
            (nin, nout), -scale, scale, requires_grad=True,
            rng=rng, label='W', graph=graph
        )
        self.bias: Optional[Tensor] = (
            Tensor.zeros((1, nout), requires_grad=True, label='b', graph=graph)
            if bias else None
        )

    def forward(self, x: Tensor) -> Tensor:
        """
        Raises:
            ShapeMismatchError: If x does not have nin columns.
        """
        out = x @ self.weight
        if self.bias is None:
            return out
        ones = Tensor.ones((x.shape[0], 1), dtype=self.bias.dtype, graph=self.bias.graph)
        return out + ones @ self.bias

    def parameters(self) -> List[Tensor]:
        return [self.weight] + ([self.bias] if self.bias is not None else [])

    def __repr__(self) -> str:
        nin, nout = self.weight.shape
        return f"Linear({nin} -> {nout}, bias={self.bias is not None})"


class MLP(Module):
    """
    Multi-Layer Perceptron: a stack of Linear layers.

    All hidden layers use the specified activation. The output layer is
    linear, which is standard for regression; apply sigmoid/softmax to the
    output yourself for classification.

    Example:
        >>> # 3 inputs -> 4 hidden -> 4 hidden -> 1 output
        >>> model = MLP(3, [4, 4, 1])
    """

    def __init__(
        self,
        nin: int,
        nouts: Sequence[int],
        activation: str = 'relu',
        graph: Optional[Graph] = None,
        rng: Optional[np.random.Generator] = None
    ) -> None:
        """
        Args:
            nin: Number of input features.
            nouts: Layer sizes. Last element is output size.
            activation: 'relu', 'tanh' or 'sigmoid' for hidden layers.

        Raises:
            ValueError: If the activation is unknown or nouts is empty.
        """
        if activation not in ACTIVATIONS:
            raise ValueError(f"Unknown activation {activation!r}; expected one of {ACTIVATIONS}")
        if not nouts:
            raise ValueError("MLP needs at least one layer size")
        sizes = [nin] + list(nouts)
        self.activation = activation
        self.layers: List[Linear] = [
            Linear(sizes[i], sizes[i + 1], graph=graph, rng=rng)
            for i in range(len(nouts))
        ]

    def _activate(self, x: Tensor) -> Tensor:
        if self.activation == 'relu':
            return x.relu()
        elif self.activation == 'tanh':
            return x.tanh()
        return x.sigmoid()

    def forward(self, x: Tensor) -> Tensor:
        for i, layer in enumerate(self.layers):
            x = layer(x)
            # last layer is linear
            if i < len(self.layers) - 1:
                x = self._activate(x)
        return x

    def parameters(self) -> List[Tensor]:
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self) -> str:
        layer_strs = [str(layer) for layer in self.layers]
        return f"MLP([{', '.join(layer_strs)}], activation={self.activation})"


# =============================================================================
# Loss Functions
# =============================================================================

def _as_targets(name: str, predictions: Tensor, targets: Any) -> Tensor:
    rows, cols = predictions.shape
    if rows * cols == 0:
        raise ShapeMismatchError(name, predictions.shape, detail="predictions are empty")
    if not isinstance(targets, Tensor):
        # flat targets are laid out in the prediction's shape
        shape = predictions.shape if np.size(targets) == rows * cols else None
        targets = Tensor(targets, shape, dtype=predictions.dtype, graph=predictions.graph)
    if targets.shape != predictions.shape:
        raise ShapeMismatchError(
            name, predictions.shape, targets.shape,
            detail="predictions and targets must have the same shape"
        )
    return targets


def mse_loss(predictions: Tensor, targets: Any) -> Tensor:
    """
    Mean Squared Error loss.

    MSE = (1/n) * sum((pred - target) ⊙ (pred - target)), n = element count.

    Args:
        predictions: Model outputs.
        targets: Ground truth, a Tensor or anything with the same shape.

    Returns:
        1x1 Tensor holding the loss.

    Raises:
        ShapeMismatchError: If the shapes differ or predictions are empty.
    """
    targets = _as_targets('mse_loss', predictions, targets)
    rows, cols = predictions.shape
    diff = predictions - targets
    return diff.hadamard(diff).sum() * (1.0 / (rows * cols))


def log_softmax(x: Tensor) -> Tensor:
    """
    Row-wise log of softmax, built as softmax followed by a natural log.

    Rows whose logits are spread so far apart that a probability underflows
    to zero raise DomainError from the log.
    """
    return x.softmax().log()


def categorical_cross_entropy(predictions: Tensor, targets: Any) -> Tensor:
    """
    Categorical cross-entropy over rows of logits.

    CCE = -(1/k) * sum(log_softmax(pred) ⊙ target), k = number of categories
    (columns). Targets are one-hot (or soft) label rows.

    Args:
        predictions: Unnormalized scores, one sample per row.
        targets: Label rows with the same shape as predictions.

    Returns:
        1x1 Tensor holding the loss.

    Raises:
        ShapeMismatchError: If the shapes differ or predictions are empty.

    Example:
        >>> pred = Tensor([1.0, 2.0, 3.0, 9.0], (2, 2))
        >>> round(categorical_cross_entropy(pred, [0.0, 1.0, 1.0, 0.0]).item(), 10)
        3.1578685995
    """
    targets = _as_targets('categorical_cross_entropy', predictions, targets)
    categories = predictions.shape[1]
    picked = log_softmax(predictions).hadamard(targets).sum()
    return picked * (-1.0 / categories)


# =============================================================================
# Optimizers
# =============================================================================

class SGD:
    """
    Stochastic Gradient Descent optimizer.

    Updates parameters: p = p - lr * p.grad

    Attributes:
        params: List of parameters to optimize.
        lr: Learning rate.
    """

    def __init__(self, params: List[Tensor], lr: float = 0.01) -> None:
        self.params = list(params)
        self.lr = lr

    def step(self) -> None:
        """
        Perform one optimization step.

        Call this after backward(). Parameters without a gradient are left alone.
        """
        for p in self.params:
            p.adjust(-self.lr)

    def zero_grad(self) -> None:
        """Reset all gradients."""
        for p in self.params:
            p.clear_gradient()


class Adam:
    """
    Adam optimizer: Adaptive Moment Estimation.

    Update rules, per element:
        m = beta1 * m + (1 - beta1) * grad
        v = beta2 * v + (1 - beta2) * grad^2
        m_hat = m / (1 - beta1^t)
        v_hat = v / (1 - beta2^t)
        p = p - lr * m_hat / (sqrt(v_hat) + eps)

    Attributes:
        params: Parameters to optimize.
        lr: Learning rate.
        beta1: Exponential decay rate for first moment.
        beta2: Exponential decay rate for second moment.
        eps: Small constant for numerical stability.
    """

    def __init__(
        self,
        params: List[Tensor],
        lr: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        eps: float = 1e-8
    ) -> None:
        self.params = list(params)
        self.lr = lr
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps

        self.m: List[np.ndarray] = [np.zeros(p.shape, dtype=p.dtype) for p in self.params]
        self.v: List[np.ndarray] = [np.zeros(p.shape, dtype=p.dtype) for p in self.params]
        self.t: int = 0

    def step(self) -> None:
        """Perform one Adam optimization step."""
        self.t += 1

        for i, p in enumerate(self.params):
            g = p.grad
            if g is None:
                continue

            self.m[i] = self.beta1 * self.m[i] + (1 - self.beta1) * g
            self.v[i] = self.beta2 * self.v[i] + (1 - self.beta2) * (g ** 2)

            # Bias correction
            m_hat = self.m[i] / (1 - self.beta1 ** self.t)
            v_hat = self.v[i] / (1 - self.beta2 ** self.t)

            p.set_data(p.data - self.lr * m_hat / (np.sqrt(v_hat) + self.eps))

    def zero_grad(self) -> None:
        """Reset all gradients."""
        for p in self.params:
            p.clear_gradient()
