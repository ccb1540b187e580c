"""
scalargrad: a small reverse-mode automatic differentiation engine.

Scalar nodes (:class:`Value`) form a computation graph as operations run;
:class:`Tensor` arranges them in 1D/2D grids, :mod:`scalargrad.nn` builds
layers on top, and :mod:`scalargrad.optim` updates the trainable leaves.
"""

from scalargrad.engine import backward
from scalargrad.errors import DomainError, InvariantViolation, ScalargradError, ShapeMismatch
from scalargrad.tensor import Tensor
from scalargrad.value import Op, Value, no_grad
from scalargrad import nn, optim, lr_scheduler

__version__ = "0.1.0"
__all__ = [
    "Value",
    "Op",
    "Tensor",
    "backward",
    "no_grad",
    "nn",
    "optim",
    "lr_scheduler",
    "DomainError",
    "ShapeMismatch",
    "InvariantViolation",
    "ScalargradError",
]
