import numpy as np
import pytest
import torch

from scalargrad.optim import SGD, Adam, optimizer_step, zero_gradients
from scalargrad.value import Value
from tests.utils import assert_close


def _values(x_np):
    return [Value(x) for x in x_np]


def _set_grads(params, g_np):
    for p, g in zip(params, g_np):
        p.grad = float(g)


def test_optimizer_step_plain_descent():
    p = Value(1.0)
    q = Value(-2.0)
    p.grad = 0.5
    q.grad = -1.0

    optimizer_step([p, q], learning_rate=0.1)

    assert p.data == pytest.approx(0.95)
    assert q.data == pytest.approx(-1.9)


def test_optimizer_step_clips_gradients():
    params = _values([1.0, 1.0, 1.0])
    _set_grads(params, [10.0, -10.0, 0.25])

    optimizer_step(params, learning_rate=0.1, clip_range=(-1.0, 1.0))

    assert [p.data for p in params] == pytest.approx([0.9, 1.1, 0.975])
    # clipping bounds the update, the stored gradient is left alone
    assert params[0].grad == 10.0


def test_invalid_clip_range():
    with pytest.raises(ValueError):
        SGD([Value(1.0)], lr=0.1, clip=(1.0, -1.0))


def test_zero_gradients():
    params = _values([1.0, 2.0])
    (params[0] * params[1]).backward()
    assert params[0].grad == 2.0

    zero_gradients(params)
    assert [p.grad for p in params] == [0.0, 0.0]


def test_gradients_accumulate_without_zeroing():
    w = Value(1.0)
    opt = SGD([w], lr=0.0)

    (w * 3).backward()
    (w * 3).backward()
    assert w.grad == 6.0

    opt.zero_grad()
    (w * 3).backward()
    assert w.grad == 3.0


def test_optimizer_rejects_non_value_params():
    with pytest.raises(TypeError):
        SGD([1.0], lr=0.1)


@pytest.mark.parametrize("cfg", [
    dict(lr=1e-2, momentum=0.0, dampening=0.0, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.1, weight_decay=0.0, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=1e-3, nesterov=False),
    dict(lr=1e-2, momentum=0.9, dampening=0.0, weight_decay=1e-3, nesterov=True),
])
def test_sgd_multi_step_matches_torch(rng, cfg):
    x0 = rng.normal(size=12)

    xt = torch.tensor(x0, dtype=torch.float64, requires_grad=True)
    opt_t = torch.optim.SGD([xt], **cfg)

    params = _values(x0)
    opt = SGD(params, **cfg)

    for _ in range(5):
        g = rng.normal(size=x0.shape)

        xt.grad = torch.tensor(g, dtype=torch.float64)
        opt_t.step()

        _set_grads(params, g)
        opt.step()

    assert_close([p.data for p in params], xt.detach().numpy())


@pytest.mark.parametrize("weight_decay", [0.0, 1e-2])
def test_adam_multi_step_matches_torch(rng, weight_decay):
    x0 = rng.normal(size=10)

    xt = torch.tensor(x0, dtype=torch.float64, requires_grad=True)
    opt_t = torch.optim.Adam([xt], lr=1e-2, betas=(0.9, 0.999), eps=1e-8, weight_decay=weight_decay)

    params = _values(x0)
    opt = Adam(params, lr=1e-2, betas=(0.9, 0.999), eps=1e-8, weight_decay=weight_decay)

    for _ in range(10):
        g = rng.normal(size=x0.shape)
        xt.grad = torch.tensor(g, dtype=torch.float64)
        opt_t.step()
        _set_grads(params, g)
        opt.step()

    assert_close([p.data for p in params], xt.detach().numpy())


def test_state_dict_resumes_identically(rng):
    x0 = rng.normal(size=4)
    grads = rng.normal(size=(6, 4))

    a = _values(x0)
    opt_a = SGD(a, lr=0.05, momentum=0.9, clip=(-0.5, 0.5))
    for g in grads:
        _set_grads(a, g)
        opt_a.step()

    b = _values(x0)
    opt_b = SGD(b, lr=0.05, momentum=0.9, clip=(-0.5, 0.5))
    for g in grads[:3]:
        _set_grads(b, g)
        opt_b.step()
    state = opt_b.state_dict()

    opt_c = SGD(b, lr=1.0)
    opt_c.load_state_dict(state)
    assert opt_c.clip == (-0.5, 0.5)
    for g in grads[3:]:
        _set_grads(b, g)
        opt_c.step()

    assert_close([p.data for p in b], [p.data for p in a])
