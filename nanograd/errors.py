"""
Errors
======

Every failure the engine can signal. All of them derive from AutogradError so
callers can catch the whole family, and each one also derives from the
built-in exception it most resembles (ValueError for bad shapes, TypeError for
bad numbers, ...) so ordinary `except ValueError` code keeps working.

None of these are transient: they mean the caller built an ill-shaped graph or
the engine itself has a bug. Nothing inside the package catches them.
"""

from __future__ import annotations
from typing import Optional, Tuple


Shape = Tuple[int, int]


class AutogradError(Exception):
    """Base class for all nanograd errors."""


class ShapeMismatchError(AutogradError, ValueError):
    """
    Operand shapes are incompatible with the requested operation.

    Attributes:
        op: Name of the operation that rejected its operands.
        shapes: The offending shapes, in operand order.
    """

    def __init__(self, op: str, *shapes: Shape, detail: str = '') -> None:
        self.op = op
        self.shapes = shapes
        if shapes:
            shown = ' and '.join(str(tuple(s)) for s in shapes)
            message = f"{op}: incompatible shapes {shown}"
            if detail:
                message += f" ({detail})"
        else:
            message = f"{op}: {detail}"
        super().__init__(message)


class DomainError(AutogradError, ValueError):
    """Input lies outside the mathematical domain of an operation (e.g. log of 0)."""


class NumericConversionError(AutogradError, TypeError):
    """A value could not be converted to the tensor element type."""


class UnsupportedOperationError(AutogradError, NotImplementedError):
    """No forward or backward rule is registered for an operation."""

    def __init__(self, op: str, phase: str) -> None:
        self.op = op
        self.phase = phase
        super().__init__(f"{phase} is not implemented for operation '{op}'")


class MissingGradientError(AutogradError, RuntimeError):
    """Backward reached a node that has no upstream gradient."""

    def __init__(self, node_id: int, op: str) -> None:
        self.node_id = node_id
        self.op = op
        super().__init__(
            f"node {node_id} ({op}) has no gradient to propagate; "
            f"backward must start from a seeded root"
        )


class GraphError(AutogradError, RuntimeError):
    """The computation graph is malformed or an operation would corrupt it."""


class DeviceMismatchError(AutogradError, RuntimeError):
    """Operands of one operation live on different devices."""

    def __init__(self, op: str, device_a: str, device_b: Optional[str] = None) -> None:
        self.op = op
        self.device_a = device_a
        self.device_b = device_b
        super().__init__(f"{op}: device mismatch '{device_a}' vs '{device_b}'")
