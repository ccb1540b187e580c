from typing import Callable, Sequence

import numpy as np
import torch

from scalargrad.tensor import Tensor
from scalargrad.value import Value

ATOL = 1e-9
RTOL = 1e-7


def make_tensor(x_np: np.ndarray, requires_grad: bool = True) -> Tensor:
    return Tensor(np.asarray(x_np, dtype=np.float64), requires_grad=requires_grad)


def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float64), requires_grad=requires_grad)


def tdata(x):
    if isinstance(x, Value):
        return np.asarray(x.data)
    return x.data


def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a - b))}"


def assert_grad_close(t: Tensor, tt: torch.Tensor, atol=ATOL, rtol=RTOL):
    assert tt.grad is not None, "Torch grad is None"
    assert_close(t.grad, tt.grad.detach().cpu().numpy(), atol=atol, rtol=rtol)


def numeric_grad(fn: Callable[..., Value], point: Sequence[float], eps: float = 1e-6) -> np.ndarray:
    """Central finite differences of ``fn(*Values) -> Value`` at ``point``."""
    point = [float(p) for p in point]
    grads = []
    for i in range(len(point)):
        hi = list(point)
        lo = list(point)
        hi[i] += eps
        lo[i] -= eps
        f_hi = fn(*[Value(x) for x in hi]).data
        f_lo = fn(*[Value(x) for x in lo]).data
        grads.append((f_hi - f_lo) / (2 * eps))
    return np.array(grads)
