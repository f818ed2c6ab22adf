"""nanograd: a matrix autograd engine on NumPy."""

from .buffer import ShapedBuffer
from .config import Config, get_config, set_config, reset_config
from .device import Device
from .errors import (
    AutogradError,
    ShapeMismatchError,
    DomainError,
    NumericConversionError,
    UnsupportedOperationError,
    MissingGradientError,
    GraphError,
    DeviceMismatchError,
)
from .graph import Graph, get_default_graph, use_graph, no_grad, is_grad_enabled, topological_sort, draw_graph
from .ops import Op, OpKind
from .tensor import (
    Tensor,
    manual_seed,
    from_data,
    full,
    zeros,
    ones,
    full_like,
    zeros_like,
    ones_like,
    rand,
    uniform,
    add,
    sub,
    mul,
    matmul,
)
from .nn import Module, Linear, MLP, mse_loss, log_softmax, categorical_cross_entropy, SGD, Adam

__all__ = [
    "Tensor",
    "ShapedBuffer",
    "Device",
    "Op",
    "OpKind",
    "Graph",
    "get_default_graph",
    "use_graph",
    "no_grad",
    "is_grad_enabled",
    "topological_sort",
    "draw_graph",
    "manual_seed",
    "from_data",
    "full",
    "zeros",
    "ones",
    "full_like",
    "zeros_like",
    "ones_like",
    "rand",
    "uniform",
    "add",
    "sub",
    "mul",
    "matmul",
    "Module",
    "Linear",
    "MLP",
    "mse_loss",
    "log_softmax",
    "categorical_cross_entropy",
    "SGD",
    "Adam",
    "Config",
    "get_config",
    "set_config",
    "reset_config",
    "AutogradError",
    "ShapeMismatchError",
    "DomainError",
    "NumericConversionError",
    "UnsupportedOperationError",
    "MissingGradientError",
    "GraphError",
    "DeviceMismatchError",
]
