from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple, Union

import numpy as np

from scalargrad.errors import ShapeMismatch
from scalargrad.tensor import Tensor
from scalargrad.value import Value

Parameter = Union[Tensor, Value]

ACTIVATIONS: Dict[str, Callable[[Any], Any]] = {
    "identity": lambda x: x,
    "relu": lambda x: x.relu(),
    "tanh": lambda x: x.tanh(),
    "sigmoid": lambda x: x.sigmoid(),
}
"""Activation selector. Each entry works on both ``Value`` and ``Tensor``."""


def get_activation(name: str) -> Callable[[Any], Any]:
    """
    Look up an activation function by name.

    Raises
    ------
    ValueError
        If ``name`` is not one of ``identity``, ``relu``, ``tanh``, ``sigmoid``.
    """
    try:
        return ACTIVATIONS[name]
    except KeyError:
        raise ValueError(f"Unknown activation {name!r}; expected one of {sorted(ACTIVATIONS)}") from None


def _as_tensor(x: Any) -> Tensor:
    return Tensor._ensure_tensor(x)


class Module:
    """
    Base class for all neural network modules.

    Modules can contain:
    - submodules (instances of :class:`Module`)
    - parameters (instances of :class:`Tensor` or :class:`Value`)

    Submodules and parameters assigned as attributes are registered automatically
    via :meth:`__setattr__`. The public API mirrors a minimal subset of PyTorch's
    ``torch.nn.Module``.
    """
    def __init__(self) -> None:
        """
        Initialize an empty module.

        Attributes
        ----------
        _modules : dict[str, Module]
            Registered child modules.
        _parameters : dict[str, Tensor or Value]
            Registered parameters.
        training : bool
            If True, the module is in training mode.
        """
        self._modules = {}
        self._parameters = {}
        self.training = True

    def named_parameters(self, prefix: str = "") -> Iterator[Tuple[str, Parameter]]:
        """
        Yield ``(dotted_name, parameter)`` pairs, local parameters first, then
        those of children in insertion order.
        """
        for name, param in self._parameters.items():
            yield prefix + name, param
        for name, module in self._modules.items():
            yield from module.named_parameters(prefix=f"{prefix}{name}.")

    def parameters(self) -> List[Value]:
        """
        Return a flat list of all trainable scalar leaves in this module and
        its submodules.

        Returns
        -------
        list[Value]
            Unique leaves in a deterministic order (see :meth:`named_parameters`),
            tensors flattened row-major.
        """
        seen = set()
        params = []
        for _, param in self.named_parameters():
            leaves = param.parameters() if isinstance(param, Tensor) else [param]
            for v in leaves:
                if v.requires_grad and v not in seen:
                    seen.add(v)
                    params.append(v)
        return params

    def zero_grad(self) -> None:
        """Set gradients of all parameters to zero."""
        for param in self.parameters():
            param.zero_grad()

    def train(self, mode: bool = True) -> "Module":
        """
        Set training mode for this module and all submodules.

        Returns
        -------
        Module
            ``self`` (to allow chaining).
        """
        self.training = mode
        for module in self._modules.values():
            module.train(mode)
        return self

    def eval(self) -> "Module":
        return self.train(False)

    def __setattr__(self, name: str, value: Any) -> None:
        """
        Register submodules and parameters assigned as attributes.

        Notes
        -----
        - Assigning a :class:`Module` registers it in ``self._modules``.
        - Assigning a :class:`Tensor` or :class:`Value` registers it in
          ``self._parameters``.
        - Everything is still set as a normal attribute via ``super().__setattr__``.
        """
        if isinstance(value, Module):
            self._modules[name] = value
        elif isinstance(value, (Tensor, Value)):
            self._parameters[name] = value
        super().__setattr__(name, value)

    def __repr__(self):
        lines = [f"{self.__class__.__name__}("]
        for name, module in self._modules.items():
            mod_repr = "\n    ".join(repr(module).splitlines())
            lines.append(f"  ({name}): {mod_repr}")
        lines.append(")")
        return "\n".join(lines)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.forward(*args, **kwargs)

    def forward(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def state_dict(self) -> Dict[str, Any]:
        """
        Return a state dictionary of parameter values.

        Returns
        -------
        dict
            Maps dotted parameter names (e.g. ``"0.weight"``) to a numpy copy
            of a tensor's values or the float of a scalar parameter.
            Gradients are not included.
        """
        state = {}
        for name, param in self.named_parameters():
            state[name] = param.data.copy() if isinstance(param, Tensor) else param.data
        return state

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load parameter values in place, keeping node identity.

        Raises
        ------
        KeyError
            If a required parameter key is missing.
        ShapeMismatch
            If a stored tensor has the wrong shape.
        """
        for name, param in self.named_parameters():
            if name not in state_dict:
                raise KeyError(f"{name} not found in state_dict")
            if isinstance(param, Tensor):
                param.assign(state_dict[name])
            else:
                param.data = float(state_dict[name])


class Neuron(Module):
    """
    A single unit: ``activation(bias + sum_i(w_i * x_i))``.

    Parameters
    ----------
    n_inputs : int
        Expected input length.
    activation : str, default="identity"
        One of ``identity``, ``relu``, ``tanh``, ``sigmoid``.
    rng : int or numpy.random.Generator, optional
        Seed or generator for the uniform ``[-1, 1]`` weight init.

    Notes
    -----
    The output is a single ``Value``. Inside a :class:`Sequential` the next
    layer sees it as a one-element input, so ``out_features`` is 1.
    """
    def __init__(self, n_inputs: int, activation: str = "identity", rng: Any = None) -> None:
        super().__init__()
        self._activation_name = activation
        self._activation = get_activation(activation)
        self.weight = Tensor.uniform(n_inputs, low=-1.0, high=1.0, requires_grad=True, rng=rng)
        self.bias = Value(0.0)

    @property
    def in_features(self) -> int:
        return self.weight.shape[0]

    @property
    def out_features(self) -> int:
        return 1

    def __repr__(self):
        return f"{self.__class__.__name__}(n_inputs={self.in_features}, activation={self._activation_name!r})"

    def forward(self, x: Any) -> Value:
        x = _as_tensor(x)
        if x.shape != (self.in_features,):
            raise ShapeMismatch(f"{self!r} expects input of shape ({self.in_features},), got {x.shape}")
        return self._activation(self.weight @ x + self.bias)


class Linear(Module):
    """
    Fully-connected layer.

    Computes ``y_j = activation(b_j + sum_i(W_ji * x_i))`` for every output
    ``j``, through Tensor operations so gradients flow to ``weight`` and
    ``bias`` automatically.

    Parameters
    ----------
    in_features : int
        Number of input features.
    out_features : int
        Number of output features.
    activation : str, default="identity"
        One of ``identity``, ``relu``, ``tanh``, ``sigmoid``.
    bias : bool, default=True
        If True, includes a learnable bias.
    rng : int or numpy.random.Generator, optional
        Seed or generator for the He-scaled normal weight init.
    """
    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation: str = "identity",
        bias: bool = True,
        rng: Any = None,
    ) -> None:
        super().__init__()
        if in_features <= 0 or out_features <= 0:
            raise ValueError(f"Linear dimensions must be positive, got ({in_features}, {out_features})")
        self._activation_name = activation
        self._activation = get_activation(activation)
        gain = (2. / in_features) ** 0.5
        self.weight = Tensor.randn(out_features, in_features, requires_grad=True, scale=gain, rng=rng)
        self.bias = Tensor.zeros(out_features, requires_grad=True) if bias else None

    @property
    def in_features(self) -> int:
        return self.weight.shape[1]

    @property
    def out_features(self) -> int:
        return self.weight.shape[0]

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(in_features={self.in_features}, out_features={self.out_features}, "
            f"activation={self._activation_name!r}, bias={self.bias is not None})"
        )

    def forward(self, x: Any) -> Tensor:
        """
        Parameters
        ----------
        x : Tensor or array-like
            Input of shape ``(in_features,)`` or ``(batch, in_features)``.

        Returns
        -------
        Tensor
            Output of shape ``(out_features,)`` or ``(batch, out_features)``.

        Raises
        ------
        ShapeMismatch
            If the last input dimension is not ``in_features``.
        """
        x = _as_tensor(x)
        if x.shape[-1] != self.in_features:
            raise ShapeMismatch(f"{self!r} expects {self.in_features} input features, got shape {x.shape}")
        out = self.weight @ x if x.ndim == 1 else x @ self.weight.T
        if self.bias is not None:
            out = out + self.bias
        return self._activation(out)


class _Activation(Module):
    name = "identity"

    def __repr__(self):
        return f"{self.__class__.__name__}()"

    def forward(self, x: Any) -> Any:
        return ACTIVATIONS[self.name](x)


class Identity(_Activation):
    """Pass-through."""
    name = "identity"


class ReLU(_Activation):
    """Element-wise ReLU activation: ``max(0, x)``."""
    name = "relu"


class Tanh(_Activation):
    """Element-wise hyperbolic tangent activation."""
    name = "tanh"


class Sigmoid(_Activation):
    """Element-wise logistic sigmoid activation."""
    name = "sigmoid"


class Sequential(Module):
    """
    A container module that applies submodules in sequence.

    Parameters
    ----------
    *modules : Module
        Modules applied in the given order.

    Raises
    ------
    ShapeMismatch
        If a sized layer's ``in_features`` differs from the ``out_features``
        of the closest preceding sized layer. Activation modules carry no
        size and are skipped by this check.
    """
    def __init__(self, *modules: Module) -> None:
        super().__init__()
        self._modules_list = []

        prev_out = None
        prev_idx = None
        for idx, module in enumerate(modules):
            if not isinstance(module, Module):
                raise TypeError(f"All elements must be Module instances, got {type(module)}")
            in_features = getattr(module, "in_features", None)
            if in_features is not None and prev_out is not None and in_features != prev_out:
                raise ShapeMismatch(
                    f"layer {prev_idx} produces {prev_out} features but layer {idx} ({module!r}) "
                    f"expects {in_features}"
                )
            if in_features is not None:
                prev_out = getattr(module, "out_features", None)
                prev_idx = idx
            self._modules_list.append(module)
            self._modules[str(idx)] = module

    def forward(self, x: Any) -> Any:
        """Apply each module to the output of the previous one."""
        for module in self._modules_list:
            x = module(x)
        return x

    def __getitem__(self, idx: int) -> Module:
        return self._modules_list[idx]

    def __len__(self) -> int:
        return len(self._modules_list)


class MLP(Sequential):
    """
    Multi-layer perceptron: a :class:`Sequential` of :class:`Linear` layers.

    Hidden layers use ``activation``; the final layer is linear.

    Parameters
    ----------
    n_inputs : int
        Input feature count.
    sizes : Sequence[int]
        Output size of each layer, last entry being the network output.
    activation : str, default="relu"
        Hidden-layer activation.
    rng : int or numpy.random.Generator, optional
        Seed or generator shared by all layers' weight init.
    """
    def __init__(self, n_inputs: int, sizes: Sequence[int], activation: str = "relu", rng: Any = None) -> None:
        gen = np.random.default_rng(rng)
        dims = [n_inputs] + list(sizes)
        layers = [
            Linear(dims[i], dims[i + 1], activation=activation if i < len(sizes) - 1 else "identity", rng=gen)
            for i in range(len(sizes))
        ]
        super().__init__(*layers)


def _align(input: Any, target: Any) -> Tuple[Tensor, Tensor]:
    input = Tensor._ensure_tensor(input)
    target = Tensor._ensure_tensor(target)
    if input.size != target.size:
        raise ShapeMismatch(f"loss input shape {input.shape} and target shape {target.shape} differ")
    return input, target.reshape(input.shape)


class MSELoss(Module):
    """
    Mean-squared error loss.

    Parameters
    ----------
    reduction : {'mean', 'sum'}, default='mean'
        Reduction applied to the per-element squared error.
    """
    def __init__(self, reduction: str = "mean") -> None:
        super().__init__()
        if reduction not in ("mean", "sum"):
            raise ValueError(f"reduction must be 'mean' or 'sum', got {reduction!r}")
        self.reduction = reduction

    def __repr__(self):
        return f"{self.__class__.__name__}(reduction={self.reduction})"

    def forward(self, input: Any, target: Any) -> Value:
        """
        Parameters
        ----------
        input : Tensor or Value
            Predicted values.
        target : Tensor, Value or array-like
            Target values with the same number of elements as ``input``.

        Returns
        -------
        Value
            Scalar loss.
        """
        input, target = _align(input, target)
        diff = input - target
        loss = diff * diff
        if self.reduction == "mean":
            return loss.mean()
        return loss.sum()


class HingeLoss(Module):
    """
    Max-margin loss ``relu(1 - y * score)`` for labels in ``{-1, +1}``.

    Parameters
    ----------
    reduction : {'mean', 'sum'}, default='mean'
    """
    def __init__(self, reduction: str = "mean") -> None:
        super().__init__()
        if reduction not in ("mean", "sum"):
            raise ValueError(f"reduction must be 'mean' or 'sum', got {reduction!r}")
        self.reduction = reduction

    def __repr__(self):
        return f"{self.__class__.__name__}(reduction={self.reduction})"

    def forward(self, scores: Any, labels: Any) -> Value:
        scores, labels = _align(scores, labels)
        margins = (1 - labels * scores).relu()
        if self.reduction == "mean":
            return margins.mean()
        return margins.sum()
