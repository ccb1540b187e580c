import numbers
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from scalargrad import engine
from scalargrad.errors import ShapeMismatch
from scalargrad.value import Value


def _normalize_shape(shape: Sequence[Any]) -> Tuple[int, ...]:
    """
    Accept ``f(2, 3)`` and ``f((2, 3))`` alike.

    Examples
    --------
    >>> _normalize_shape((2, 3))
    (2, 3)
    >>> _normalize_shape(((2, 3),))
    (2, 3)
    """
    if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
        shape = tuple(shape[0])
    shape = tuple(int(s) for s in shape)
    if len(shape) not in (1, 2):
        raise ShapeMismatch(f"only 1D and 2D tensors are supported, got shape {shape}")
    if any(s < 0 for s in shape):
        raise ShapeMismatch(f"negative dimension in shape {shape}")
    return shape


def _chain_sum(values: Iterable[Value]) -> Value:
    """Left-to-right accumulation ``((v0 + v1) + v2) + ...`` of scalar nodes."""
    total = None
    for v in values:
        total = v if total is None else total + v
    if total is None:
        return Value(0.0, requires_grad=False)
    return total


def _dot(xs: Sequence[Value], ys: Sequence[Value]) -> Value:
    return _chain_sum(x * y for x, y in zip(xs, ys))


class Tensor:
    """
    A 1D or 2D grid of :class:`~scalargrad.value.Value` nodes.

    Storage is a flat row-major list of node references plus a fixed shape.
    Every operation is expressed through scalar node operations, so each
    output element is part of the computation graph and gradients reach the
    underlying leaves through the ordinary backward pass.

    Parameters
    ----------
    data : array-like or Tensor
        Numbers, ``Value`` objects, (nested) lists of them, or a numpy array.
        Numbers become new leaf nodes; ``Value`` objects are shared, not
        copied. A ``Tensor`` argument shares its nodes.
    requires_grad : bool, default False
        ``requires_grad`` of leaf nodes created from plain numbers.

    Raises
    ------
    ShapeMismatch
        If the data is ragged, zero-dimensional, or has more than two
        dimensions.

    Examples
    --------
    >>> x = Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
    >>> x.shape
    (2, 2)
    >>> loss = (x * x).sum()
    >>> loss.backward()
    >>> x.grad
    array([[2., 4.],
           [6., 8.]])
    """
    def __init__(self, data: Any, requires_grad: bool = False) -> None:
        if isinstance(data, Tensor):
            self._values = list(data._values)
            self._shape = data.shape
            return

        try:
            arr = np.array(data, dtype=object)
        except ValueError as e:
            raise ShapeMismatch(f"ragged tensor data: {e}") from e
        if arr.ndim not in (1, 2):
            raise ShapeMismatch(f"only 1D and 2D tensors are supported, got {arr.ndim}D data")

        values = []
        for item in arr.ravel():
            if isinstance(item, Value):
                values.append(item)
            elif isinstance(item, numbers.Real):
                values.append(Value(item, requires_grad=requires_grad))
            else:
                raise ShapeMismatch(f"ragged or non-numeric tensor data: element {item!r}")

        self._values = values
        self._shape = tuple(arr.shape)

    @classmethod
    def from_values(cls, values: Sequence[Value], shape: Sequence[int]) -> "Tensor":
        """
        Build a tensor around existing nodes without copying them.

        Raises
        ------
        ShapeMismatch
            If ``len(values)`` does not match the product of ``shape``.
        """
        shape = _normalize_shape(tuple(shape))
        values = list(values)
        if len(values) != int(np.prod(shape)):
            raise ShapeMismatch(f"{len(values)} values cannot fill shape {shape}")
        out = cls.__new__(cls)
        out._values = values
        out._shape = shape
        return out

    @property
    def shape(self) -> Tuple[int, ...]:
        """tuple[int, ...]: Shape of the tensor."""
        return self._shape

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        return len(self._values)

    @property
    def requires_grad(self) -> bool:
        return any(v.requires_grad for v in self._values)

    @property
    def data(self) -> np.ndarray:
        """numpy.ndarray: Forward values as a float64 array of shape ``self.shape``."""
        return np.array([v.data for v in self._values], dtype=np.float64).reshape(self._shape)

    @property
    def grad(self) -> np.ndarray:
        """numpy.ndarray: Accumulated gradients as a float64 array of shape ``self.shape``."""
        return np.array([v.grad for v in self._values], dtype=np.float64).reshape(self._shape)

    @property
    def T(self) -> "Tensor":
        """Tensor: Transpose of a 2D tensor; a 1D tensor is returned unchanged."""
        if self.ndim == 1:
            return self
        order = self._index_map().T.ravel()
        return Tensor.from_values([self._values[i] for i in order], self._shape[::-1])

    def values(self) -> List[Value]:
        """Row-major list of the underlying nodes."""
        return list(self._values)

    def _index_map(self) -> np.ndarray:
        return np.arange(self.size).reshape(self._shape)

    def __len__(self) -> int:
        return self._shape[0]

    def __iter__(self) -> Iterator[Union[Value, "Tensor"]]:
        for i in range(len(self)):
            yield self[i]

    def __getitem__(self, idx: Union[int, slice, tuple]) -> Union[Value, "Tensor"]:
        """
        Index or slice with numpy semantics.

        Returns a ``Value`` when the selection is a single element, otherwise a
        ``Tensor`` sharing the selected nodes. Gradients flow back to the
        original nodes because no copies are made.
        """
        picked = self._index_map()[idx]
        if np.ndim(picked) == 0:
            return self._values[int(picked)]
        return Tensor.from_values([self._values[i] for i in np.ravel(picked)], np.shape(picked))

    def reshape(self, *shape: Any) -> "Tensor":
        """
        Return a tensor with the same nodes and a new shape (``-1`` allowed).

        Raises
        ------
        ShapeMismatch
            If the sizes are incompatible.
        """
        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = tuple(shape[0])
        try:
            new_shape = self._index_map().reshape(shape).shape
        except ValueError as e:
            raise ShapeMismatch(f"cannot reshape {self._shape} into {tuple(shape)}") from e
        return Tensor.from_values(self._values, new_shape)

    def flatten(self) -> "Tensor":
        return Tensor.from_values(self._values, (self.size,))

    @staticmethod
    def _ensure_tensor(x: Union["Tensor", Value, Any]) -> "Tensor":
        """
        Ensure that ``x`` is a :class:`Tensor`.

        Scalars (``Value`` or numbers) become a one-element tensor that
        broadcasts against any shape. Plain numbers become constants.
        """
        if isinstance(x, Tensor):
            return x
        if isinstance(x, Value):
            return Tensor.from_values([x], (1,))
        if isinstance(x, numbers.Real):
            return Tensor.from_values([Value(x, requires_grad=False)], (1,))
        return Tensor(x)

    def _broadcast_with(self, other: "Tensor") -> Tuple[Tuple[int, ...], np.ndarray, np.ndarray]:
        """
        Compute the broadcast shape and the source index of each output element.

        Broadcasting follows numpy rules restricted to at most two dimensions.

        Raises
        ------
        ShapeMismatch
            If the shapes cannot be broadcast together.
        """
        try:
            shape = np.broadcast_shapes(self._shape, other.shape)
        except ValueError as e:
            raise ShapeMismatch(f"shapes {self._shape} and {other.shape} are not broadcastable") from e
        left = np.broadcast_to(self._index_map(), shape).ravel()
        right = np.broadcast_to(other._index_map(), shape).ravel()
        return shape, left, right

    def _binary(self, other: Any, fn: Callable[[Value, Value], Value]) -> "Tensor":
        other = Tensor._ensure_tensor(other)
        shape, left, right = self._broadcast_with(other)
        out = [fn(self._values[i], other._values[j]) for i, j in zip(left, right)]
        return Tensor.from_values(out, shape)

    def _unary(self, fn: Callable[[Value], Value]) -> "Tensor":
        return Tensor.from_values([fn(v) for v in self._values], self._shape)

    def __add__(self, other: Any) -> "Tensor":
        """Elementwise addition with broadcasting."""
        return self._binary(other, lambda a, b: a + b)

    def __sub__(self, other: Any) -> "Tensor":
        """Elementwise subtraction with broadcasting."""
        return self._binary(other, lambda a, b: a - b)

    def __mul__(self, other: Any) -> "Tensor":
        """Elementwise multiplication with broadcasting."""
        return self._binary(other, lambda a, b: a * b)

    def __truediv__(self, other: Any) -> "Tensor":
        """Elementwise division with broadcasting; a zero divisor raises ``DomainError``."""
        return self._binary(other, lambda a, b: a / b)

    def __radd__(self, other: Any) -> "Tensor":
        return Tensor._ensure_tensor(other) + self

    def __rsub__(self, other: Any) -> "Tensor":
        return Tensor._ensure_tensor(other) - self

    def __rmul__(self, other: Any) -> "Tensor":
        return Tensor._ensure_tensor(other) * self

    def __rtruediv__(self, other: Any) -> "Tensor":
        return Tensor._ensure_tensor(other) / self

    def __neg__(self) -> "Tensor":
        return self._unary(lambda v: -v)

    def __pow__(self, exponent: Union[int, float]) -> "Tensor":
        return self._unary(lambda v: v ** exponent)

    def relu(self) -> "Tensor":
        return self._unary(Value.relu)

    def tanh(self) -> "Tensor":
        return self._unary(Value.tanh)

    def sigmoid(self) -> "Tensor":
        return self._unary(Value.sigmoid)

    def exp(self) -> "Tensor":
        return self._unary(Value.exp)

    def log(self) -> "Tensor":
        return self._unary(Value.log)

    def __matmul__(self, other: "Tensor") -> Union["Tensor", Value]:
        """
        Matrix product built from scalar multiply/add chains.

        Supported cases:
        - ``(m, k) @ (k, n) -> (m, n)``
        - ``(m, k) @ (k,) -> (m,)``
        - ``(k,) @ (k, n) -> (n,)``
        - ``(k,) @ (k,) -> Value``

        Each output element is ``((a0*b0 + a1*b1) + a2*b2) + ...``, so it
        participates fully in the computation graph.

        Raises
        ------
        ShapeMismatch
            If the inner dimensions differ.
        """
        other = Tensor._ensure_tensor(other)
        k_left = self._shape[-1]
        k_right = other.shape[0]
        if k_left != k_right:
            raise ShapeMismatch(f"matmul inner dimensions differ: {self._shape} @ {other.shape}")

        a = self if self.ndim == 2 else self.reshape(1, k_left)
        b = other if other.ndim == 2 else other.reshape(k_right, 1)
        rows = [a._values[i * k_left:(i + 1) * k_left] for i in range(a.shape[0])]
        cols = [[b._values[p * b.shape[1] + j] for p in range(k_right)] for j in range(b.shape[1])]
        out = [_dot(row, col) for row in rows for col in cols]

        if self.ndim == 1 and other.ndim == 1:
            return out[0]
        if self.ndim == 1:
            return Tensor.from_values(out, (b.shape[1],))
        if other.ndim == 1:
            return Tensor.from_values(out, (a.shape[0],))
        return Tensor.from_values(out, (a.shape[0], b.shape[1]))

    def sum(self, axis: Optional[int] = None) -> Union[Value, "Tensor"]:
        """
        Sum of elements as an explicit chain of additions.

        Parameters
        ----------
        axis : int or None, default None
            If None, reduce over all elements and return a ``Value``. For a
            2D tensor, ``axis`` 0 or 1 (negative allowed) returns a 1D tensor.
            For a 1D tensor, ``axis`` 0 is the same as None.
        """
        if axis is None:
            return _chain_sum(self._values)
        axis = self._normalize_axis(axis)
        if self.ndim == 1:
            return _chain_sum(self._values)
        index = self._index_map()
        lanes = index.T if axis == 0 else index
        out = [_chain_sum(self._values[i] for i in lane) for lane in lanes]
        return Tensor.from_values(out, (len(out),))

    def mean(self, axis: Optional[int] = None) -> Union[Value, "Tensor"]:
        """Arithmetic mean; see :meth:`sum` for ``axis`` semantics."""
        total = self.sum(axis)
        if axis is None or self.ndim == 1:
            count = self.size
        else:
            count = self._shape[self._normalize_axis(axis)]
        return total / count

    def _normalize_axis(self, axis: int) -> int:
        if not -self.ndim <= axis < self.ndim:
            raise ShapeMismatch(f"axis {axis} out of range for shape {self._shape}")
        return axis % self.ndim

    def assign(self, data: Any) -> None:
        """
        Overwrite node values in place, keeping node identity.

        Raises
        ------
        ShapeMismatch
            If ``data`` does not have this tensor's shape.
        """
        arr = np.asarray(data, dtype=np.float64)
        if arr.shape != self._shape:
            raise ShapeMismatch(f"cannot assign data of shape {arr.shape} to tensor of shape {self._shape}")
        for v, x in zip(self._values, arr.ravel()):
            v.data = float(x)

    def parameters(self) -> List[Value]:
        """Unique leaf nodes that require grad, in storage order."""
        seen = set()
        params = []
        for v in self._values:
            if v.is_leaf and v.requires_grad and v not in seen:
                seen.add(v)
                params.append(v)
        return params

    def backward(self, gradient: Optional[Any] = None) -> None:
        """
        Backpropagate from every element at once.

        Parameters
        ----------
        gradient : array-like, optional
            Seed gradient per element, same shape as the tensor. Defaults to
            ones (equivalent to ``self.sum().backward()``).
        """
        if gradient is None:
            seeds = [1.0] * self.size
        else:
            g = np.asarray(gradient, dtype=np.float64)
            if g.shape != self._shape:
                raise ShapeMismatch(f"gradient shape {g.shape} does not match tensor shape {self._shape}")
            seeds = g.ravel().tolist()
        engine.backward(self._values, seeds)

    def zero_grad(self) -> None:
        for v in self._values:
            v.zero_grad()

    def __repr__(self) -> str:
        data_str = np.array2string(self.data, precision=4, separator=", ")
        return f"Tensor({data_str}, shape={self._shape}, requires_grad={self.requires_grad})"

    @staticmethod
    def zeros(*shape: int, requires_grad: bool = False) -> "Tensor":
        """Tensor of new leaf nodes holding ``0.0``."""
        shape = _normalize_shape(shape)
        return Tensor(np.zeros(shape), requires_grad=requires_grad)

    @staticmethod
    def ones(*shape: int, requires_grad: bool = False) -> "Tensor":
        shape = _normalize_shape(shape)
        return Tensor(np.ones(shape), requires_grad=requires_grad)

    @staticmethod
    def randn(
        *shape: int,
        requires_grad: bool = False,
        scale: float = 1.0,
        rng: Optional[Union[int, np.random.Generator]] = None,
    ) -> "Tensor":
        """
        Tensor of new leaf nodes drawn from ``N(0, scale**2)``.

        Parameters
        ----------
        rng : int or numpy.random.Generator, optional
            Seed or generator passed to ``numpy.random.default_rng``.
        """
        shape = _normalize_shape(shape)
        gen = np.random.default_rng(rng)
        return Tensor(gen.normal(0.0, scale, size=shape), requires_grad=requires_grad)

    @staticmethod
    def uniform(
        *shape: int,
        low: float = -1.0,
        high: float = 1.0,
        requires_grad: bool = False,
        rng: Optional[Union[int, np.random.Generator]] = None,
    ) -> "Tensor":
        shape = _normalize_shape(shape)
        gen = np.random.default_rng(rng)
        return Tensor(gen.uniform(low, high, size=shape), requires_grad=requires_grad)
