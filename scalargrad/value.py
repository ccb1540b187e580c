import enum
import math
import numbers
from typing import Any, Optional, Tuple, Union

from scalargrad.errors import DomainError

_grad_enabled = True
"""bool: Global flag indicating whether graph recording is enabled.

This flag is toggled by the :class:`no_grad` context manager.
When ``_grad_enabled`` is ``False``, new nodes record no parents and
do not require gradients.
"""


class no_grad:
    """
    Context manager that temporarily disables graph recording.

    Examples
    --------
    >>> with no_grad():
    ...     y = model(x)   # no graph recorded
    >>> # Outside the context, operations are recorded again.

    Notes
    -----
    It is safe to nest ``no_grad`` contexts; the previous state of
    ``_grad_enabled`` is restored upon exit.
    """
    def __enter__(self):
        global _grad_enabled
        self.prev = _grad_enabled
        _grad_enabled = False

    def __exit__(self, *args):
        global _grad_enabled
        _grad_enabled = self.prev


def is_grad_enabled() -> bool:
    return _grad_enabled


class Op(enum.Enum):
    """Tag naming the local derivative rule that applies to a node."""
    LEAF = "leaf"
    ADD = "+"
    MUL = "*"
    POW = "**"
    NEG = "neg"
    RELU = "relu"
    TANH = "tanh"
    SIGMOID = "sigmoid"
    EXP = "exp"
    LOG = "log"


Number = Union[int, float]


class Value:
    """
    A single differentiable scalar.

    Every arithmetic or activation method returns a new ``Value`` that
    records the operands it was computed from (``parents``) and the tag of
    the operation (``op``). Calling :meth:`backward` on a result walks that
    graph and accumulates ``d(result)/d(node)`` into ``node.grad``.

    Parameters
    ----------
    data : float
        Scalar payload. Converted to ``float``.
    requires_grad : bool, default True
        If False, the node is excluded from backward propagation. A leaf
        created while graph recording is disabled (inside :class:`no_grad`)
        never requires grad, so parameters must be created outside such a
        block to be trainable.
    label : str, optional
        Free-form name, used in ``repr`` and by ``Module.named_parameters``.

    Examples
    --------
    >>> a = Value(2.0)
    >>> b = Value(3.0)
    >>> c = a * b
    >>> c.backward()
    >>> a.grad, b.grad
    (3.0, 2.0)
    """
    __slots__ = ("data", "grad", "requires_grad", "op", "parents", "exponent", "label")

    def __init__(self, data: Number, requires_grad: bool = True, label: str = "") -> None:
        self.data = float(data)
        self.grad = 0.0
        self.requires_grad = bool(requires_grad) and _grad_enabled
        self.op = Op.LEAF
        self.parents: Tuple["Value", ...] = ()
        self.exponent = None
        self.label = label

    @classmethod
    def _from_op(cls, data: float, op: Op, parents: Tuple["Value", ...]) -> "Value":
        out = cls(data, requires_grad=any(p.requires_grad for p in parents))
        if out.requires_grad:
            out.op = op
            out.parents = parents
        return out

    @staticmethod
    def _coerce(x: Any) -> Optional["Value"]:
        """Wrap a real number as a constant node; ``None`` for anything else."""
        if isinstance(x, Value):
            return x
        if isinstance(x, numbers.Real):
            return Value(x, requires_grad=False)
        return None

    @property
    def is_leaf(self) -> bool:
        return self.op is Op.LEAF

    def __add__(self, other: Union["Value", Number]) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        return Value._from_op(self.data + other.data, Op.ADD, (self, other))

    def __mul__(self, other: Union["Value", Number]) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        return Value._from_op(self.data * other.data, Op.MUL, (self, other))

    def __pow__(self, exponent: Number) -> "Value":
        """
        Raise to a constant numeric power.

        Raises
        ------
        TypeError
            If ``exponent`` is not a real number.
        DomainError
            For ``0 ** k`` with ``k < 0`` and for a negative base with a
            non-integer exponent, and when the result overflows a float.
        """
        if isinstance(exponent, Value) or not isinstance(exponent, numbers.Real):
            raise TypeError(f"exponent must be an int or float, got {type(exponent).__name__}")
        if self.data == 0.0 and exponent < 0:
            raise DomainError(f"0.0 ** {exponent} is undefined (division by zero)")
        if self.data < 0.0 and not float(exponent).is_integer():
            raise DomainError(f"{self.data} ** {exponent}: negative base with fractional exponent")
        try:
            out_data = self.data ** exponent
        except OverflowError as e:
            raise DomainError(f"{self.data} ** {exponent} overflows") from e
        out = Value._from_op(out_data, Op.POW, (self,))
        out.exponent = exponent
        return out

    def __neg__(self) -> "Value":
        return Value._from_op(-self.data, Op.NEG, (self,))

    def __sub__(self, other: Union["Value", Number]) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        return self + (-other)

    def __truediv__(self, other: Union["Value", Number]) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        if other.data == 0.0:
            raise DomainError(f"division by zero: {self.data} / 0.0")
        return self * other ** -1

    def __radd__(self, other: Number) -> "Value":
        return self + other

    def __rsub__(self, other: Number) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        return other - self

    def __rmul__(self, other: Number) -> "Value":
        return self * other

    def __rtruediv__(self, other: Number) -> "Value":
        other = Value._coerce(other)
        if other is None:
            return NotImplemented
        return other / self

    def relu(self) -> "Value":
        return Value._from_op(self.data if self.data > 0.0 else 0.0, Op.RELU, (self,))

    def tanh(self) -> "Value":
        return Value._from_op(math.tanh(self.data), Op.TANH, (self,))

    def sigmoid(self) -> "Value":
        x = self.data
        if x >= 0.0:
            s = 1.0 / (1.0 + math.exp(-x))
        else:
            z = math.exp(x)
            s = z / (1.0 + z)
        return Value._from_op(s, Op.SIGMOID, (self,))

    def exp(self) -> "Value":
        try:
            out_data = math.exp(self.data)
        except OverflowError as e:
            raise DomainError(f"exp({self.data}) overflows") from e
        return Value._from_op(out_data, Op.EXP, (self,))

    def log(self) -> "Value":
        if self.data <= 0.0:
            raise DomainError(f"log of non-positive value {self.data}")
        return Value._from_op(math.log(self.data), Op.LOG, (self,))

    def backward(self, gradient: float = 1.0) -> None:
        """
        Backpropagate from this node.

        Seeds this node with ``gradient`` and adds the partial derivative of
        this node with respect to every ancestor into the ancestor's
        ``grad``. Leaf gradients, this node's own included when it is a leaf,
        accumulate across calls until :meth:`zero_grad` is called.

        Raises
        ------
        InvariantViolation
            If this node does not require grad.
        """
        from scalargrad.engine import backward
        backward([self], [gradient])

    def zero_grad(self) -> None:
        self.grad = 0.0

    def __float__(self) -> float:
        return self.data

    def __repr__(self) -> str:
        label = f", label={self.label!r}" if self.label else ""
        return f"Value(data={self.data:.6g}, grad={self.grad:.6g}{label})"
