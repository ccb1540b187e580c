import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from scalargrad.value import Value

logger = logging.getLogger(__name__)

ClipRange = Tuple[float, float]


def _check_clip(clip: Optional[Sequence[float]]) -> Optional[ClipRange]:
    if clip is None:
        return None
    lo, hi = (float(c) for c in clip)
    if lo > hi:
        raise ValueError(f"clip range minimum {lo} exceeds maximum {hi}")
    return lo, hi


def _gather(params: Sequence[Value]) -> Tuple[np.ndarray, np.ndarray]:
    """Values and gradients of ``params`` as float64 arrays."""
    data = np.fromiter((p.data for p in params), dtype=np.float64, count=len(params))
    grad = np.fromiter((p.grad for p in params), dtype=np.float64, count=len(params))
    return data, grad


def _scatter(params: Sequence[Value], data: np.ndarray) -> None:
    for p, x in zip(params, data.tolist()):
        p.data = x


def clip_gradients(grad: np.ndarray, clip: Optional[ClipRange]) -> np.ndarray:
    """
    Clamp each gradient entry to ``[min, max]``.

    Returns ``grad`` unchanged when ``clip`` is None.
    """
    if clip is None:
        return grad
    clipped = np.clip(grad, clip[0], clip[1])
    n = int(np.count_nonzero(clipped != grad))
    if n:
        logger.debug("clipped %d of %d gradients to [%g, %g]", n, grad.size, clip[0], clip[1])
    return clipped


class Optimizer:
    """
    Base class for all optimizers.

    An optimizer updates a collection of trainable scalar leaves in place
    based on their accumulated gradients. Subclasses must implement
    :meth:`step` and the state serialization helpers.

    Parameters
    ----------
    params : Iterable[Value]
        Trainable leaves, typically ``model.parameters()``. Stored as a list
        and iterated in the given order.

    Notes
    -----
    - This class mirrors the high-level structure of ``torch.optim.Optimizer``:
      it maintains per-parameter state and supports ``state_dict()``
      serialization.
    - Per-parameter state is kept as numpy arrays aligned with
      ``self.params``, so :meth:`state_dict` is order-based.
    """
    def __init__(self, params: Iterable[Value]) -> None:
        self.params: List[Value] = list(params)
        for p in self.params:
            if not isinstance(p, Value):
                raise TypeError(f"optimizer parameters must be Value leaves, got {type(p).__name__}")
        self.state: Dict[str, Any] = {}

    def zero_grad(self) -> None:
        """
        Reset gradients of all parameters to zero.

        Must be called between successive backward passes, otherwise
        gradients from the previous step are added to the new ones.
        """
        zero_gradients(self.params)

    def step(self) -> None:
        """
        Perform a single optimization step.

        Subclasses must implement this method to update each parameter using its
        gradient and any optimizer-specific state.
        """
        raise NotImplementedError

    def state_dict(self) -> Dict[str, Any]:
        """
        Return the optimizer state as a Python dictionary.

        Returns
        -------
        dict
            Dictionary containing:
            - ``"hyperparams"``: optimizer hyperparameters (subclass-defined)
            - ``"state"``: copies of the per-parameter buffers, each aligned
              with ``self.params``
        """
        return {
            "hyperparams": self._get_hyperparams(),
            "state": {k: v.copy() if isinstance(v, np.ndarray) else v for k, v in self.state.items()},
        }

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load optimizer state from a dictionary produced by :meth:`state_dict`.

        Notes
        -----
        Assumes ``self.params`` correspond to the same model parameters as when
        the state was saved (order matters).
        """
        self._set_hyperparams(state_dict["hyperparams"])
        self.state = {k: v.copy() if isinstance(v, np.ndarray) else v for k, v in state_dict["state"].items()}

    def _get_hyperparams(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        raise NotImplementedError


class SGD(Optimizer):
    """
    Gradient descent with optional gradient clipping, momentum, dampening,
    weight decay and Nesterov momentum.

    Parameters
    ----------
    params : Iterable[Value]
        Parameters to optimize.
    lr : float, default=0.01
        Learning rate.
    momentum : float, default=0.0
        Momentum factor.
    dampening : float, default=0.0
        Dampening for momentum.
    weight_decay : float, default=0.0
        L2 penalty (added to the gradient after clipping).
    nesterov : bool, default=False
        If True, enables Nesterov momentum (requires ``momentum > 0``).
    clip : tuple[float, float], optional
        If given, every gradient is clamped to ``[clip[0], clip[1]]`` before
        the update.

    Notes
    -----
    With the defaults the update is plain ``value -= lr * grad``. The
    PyTorch-style momentum buffer lives in ``self.state["momentum_buffer"]``.
    """
    def __init__(
        self,
        params: Iterable[Value],
        lr: float = 0.01,
        momentum: float = 0.0,
        dampening: float = 0.0,
        weight_decay: float = 0.0,
        nesterov: bool = False,
        clip: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(params)
        if lr < 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if nesterov and momentum <= 0:
            raise ValueError("Nesterov momentum requires momentum > 0")
        self.lr = lr
        self.momentum = momentum
        self.dampening = dampening
        self.weight_decay = weight_decay
        self.nesterov = nesterov
        self.clip = _check_clip(clip)

    def step(self) -> None:
        """Update parameters in place using SGD."""
        if not self.params:
            return
        data, d_p = _gather(self.params)
        d_p = clip_gradients(d_p, self.clip)

        if self.weight_decay > 0:
            d_p = d_p + self.weight_decay * data

        if self.momentum > 0:
            buf = self.state.get("momentum_buffer")
            if buf is None:
                buf = d_p.copy()
            else:
                buf *= self.momentum
                buf += (1 - self.dampening) * d_p
            self.state["momentum_buffer"] = buf

            if self.nesterov:
                d_p = d_p + self.momentum * buf
            else:
                d_p = buf

        _scatter(self.params, data - self.lr * d_p)

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "momentum": self.momentum,
            "dampening": self.dampening,
            "weight_decay": self.weight_decay,
            "nesterov": self.nesterov,
            "clip": self.clip,
        }

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.momentum = hyperparams["momentum"]
        self.dampening = hyperparams["dampening"]
        self.weight_decay = hyperparams["weight_decay"]
        self.nesterov = hyperparams["nesterov"]
        self.clip = _check_clip(hyperparams["clip"])


class Adam(Optimizer):
    """
    Adam optimizer with optional (coupled) weight decay and gradient clipping.

    Parameters
    ----------
    params : Iterable[Value]
        Parameters to optimize.
    lr : float, default=0.001
        Learning rate.
    betas : tuple[float, float], default=(0.9, 0.999)
        Coefficients used for computing running averages of gradient and its square.
    eps : float, default=1e-8
        Term added to the denominator for numerical stability.
    weight_decay : float, default=0.0
        L2 penalty added to the gradient.
    clip : tuple[float, float], optional
        Clamp range applied to gradients before anything else.
    """
    def __init__(
        self,
        params: Iterable[Value],
        lr: float = 0.001,
        betas: Tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
        clip: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(params)
        if lr < 0:
            raise ValueError(f"Invalid learning rate: {lr}")
        self.lr = lr
        self.betas = tuple(betas)
        self.eps = eps
        self.weight_decay = weight_decay
        self.clip = _check_clip(clip)

    def step(self) -> None:
        """Update parameters in place using Adam."""
        if not self.params:
            return
        data, d_p = _gather(self.params)
        d_p = clip_gradients(d_p, self.clip)

        if self.weight_decay != 0:
            d_p = d_p + self.weight_decay * data

        if "step" not in self.state:
            self.state["step"] = 0
            self.state["exp_avg"] = np.zeros_like(data)
            self.state["exp_avg_sq"] = np.zeros_like(data)

        beta1, beta2 = self.betas
        self.state["step"] += 1
        step = self.state["step"]
        exp_avg = self.state["exp_avg"]
        exp_avg_sq = self.state["exp_avg_sq"]

        exp_avg[:] = beta1 * exp_avg + (1 - beta1) * d_p            # m_t
        exp_avg_sq[:] = beta2 * exp_avg_sq + (1 - beta2) * d_p**2   # v_t
        bias_correction1 = 1 - beta1 ** step
        bias_correction2 = 1 - beta2 ** step

        denom = np.sqrt(exp_avg_sq / bias_correction2) + self.eps
        _scatter(self.params, data - self.lr * (exp_avg / bias_correction1) / denom)

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "betas": self.betas,
            "eps": self.eps,
            "weight_decay": self.weight_decay,
            "clip": self.clip,
        }

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.betas = tuple(hyperparams["betas"])
        self.eps = hyperparams["eps"]
        self.weight_decay = hyperparams["weight_decay"]
        self.clip = _check_clip(hyperparams["clip"])


def optimizer_step(
    params: Iterable[Value],
    learning_rate: float,
    clip_range: Optional[Sequence[float]] = None,
) -> None:
    """
    One plain gradient-descent update: ``value -= learning_rate * grad``.

    Parameters
    ----------
    params : Iterable[Value]
        Trainable leaves.
    learning_rate : float
        Step size.
    clip_range : tuple[float, float], optional
        If given, each gradient is clamped to ``[min, max]`` first.
    """
    SGD(params, lr=learning_rate, clip=clip_range).step()


def zero_gradients(params: Iterable[Value]) -> None:
    """Reset every parameter's gradient to 0."""
    for p in params:
        p.zero_grad()
