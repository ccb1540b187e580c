class ScalargradError(Exception):
    """Base class for all errors raised by scalargrad."""


class DomainError(ScalargradError, ValueError):
    """
    Invalid mathematical operation on a scalar node.

    Raised for division by zero, logarithm of a non-positive value, power
    with an invalid base/exponent combination (negative base with a
    fractional exponent, zero base with a negative exponent) and ``exp``
    overflow.
    """


class ShapeMismatch(ScalargradError, ValueError):
    """Incompatible Tensor, layer or container dimensions."""


class InvariantViolation(ScalargradError, RuntimeError):
    """
    Structural invariant of the computation graph was broken.

    Raised when a cycle is detected during topological ordering, or when
    ``backward`` is called on a node that carries no operation history.
    """
