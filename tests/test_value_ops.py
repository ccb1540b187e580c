import math

import numpy as np
import pytest
import torch

from scalargrad.errors import DomainError
from scalargrad.value import Op, Value
from tests.utils import numeric_grad


def test_multiply_end_to_end():
    a = Value(2.0)
    b = Value(3.0)
    c = a * b
    c.backward()

    assert c.data == 6.0
    assert c.op is Op.MUL
    assert c.parents == (a, b)
    assert a.grad == 3.0
    assert b.grad == 2.0


def test_relu_of_negative_end_to_end():
    a = Value(-2.0)
    r = a.relu()
    r.backward()

    assert r.data == 0.0
    assert a.grad == 0.0


@pytest.mark.parametrize("x, expected", [(3.0, 1.0), (-3.0, 0.0), (0.0, 0.0)])
def test_relu_gradient(x, expected):
    a = Value(x)
    a.relu().backward()
    assert a.grad == expected


def test_mul_gradients_match_numeric(rng):
    for a_val, b_val in rng.normal(size=(20, 2)):
        a = Value(a_val)
        b = Value(b_val)
        (a * b).backward()

        num = numeric_grad(lambda x, y: x * y, [a_val, b_val])
        assert a.grad == pytest.approx(b_val)
        assert b.grad == pytest.approx(a_val)
        assert [a.grad, b.grad] == pytest.approx(num.tolist(), rel=1e-6, abs=1e-8)


def test_sub_and_div_gradients():
    a = Value(3.0)
    b = Value(4.0)
    (a - b).backward()
    assert (a.grad, b.grad) == (1.0, -1.0)

    a.zero_grad()
    b.zero_grad()
    q = a / b
    q.backward()
    assert q.data == pytest.approx(0.75)
    assert a.grad == pytest.approx(1 / 4.0)
    assert b.grad == pytest.approx(-3.0 / 16.0)


def test_operations_with_python_numbers():
    a = Value(2.0)
    y = 3 * a + 1 - a / 2 + 2 / a - (1 - a)
    y.backward()

    assert y.data == pytest.approx(6 + 1 - 1 + 1 + 1)
    assert a.grad == pytest.approx(3 - 0.5 - 2 / 4.0 + 1)


UNARY = {
    "exp": (lambda v: v.exp(), torch.exp),
    "tanh": (lambda v: v.tanh(), torch.tanh),
    "sigmoid": (lambda v: v.sigmoid(), torch.sigmoid),
    "relu": (lambda v: v.relu(), torch.relu),
    "neg": (lambda v: -v, torch.neg),
    "log": (lambda v: v.log(), torch.log),
    "cube": (lambda v: v ** 3, lambda t: t ** 3),
    "sqrt": (lambda v: v ** 0.5, torch.sqrt),
}


@pytest.mark.parametrize("op", sorted(UNARY))
def test_unary_ops_forward_backward(rng, op):
    ours, theirs = UNARY[op]
    xs = rng.normal(size=8)
    if op in ("log", "sqrt"):
        xs = np.abs(xs) + 0.1

    for x_val in xs:
        x = Value(x_val)
        y = ours(x)
        y.backward()

        xt = torch.tensor(x_val, dtype=torch.float64, requires_grad=True)
        yt = theirs(xt)
        yt.backward()

        assert y.data == pytest.approx(yt.item(), rel=1e-12, abs=1e-12)
        assert x.grad == pytest.approx(xt.grad.item(), rel=1e-10, abs=1e-12)


def test_sigmoid_is_stable_for_large_inputs():
    assert Value(-800.0).sigmoid().data == 0.0
    assert Value(800.0).sigmoid().data == 1.0


def test_composite_expression_matches_torch():
    x = Value(-4.0)
    z = 2 * x + 2 + x
    q = z.relu() + z * x
    h = (z * z).relu()
    y = h + q + q * x
    y.backward()

    xt = torch.tensor([-4.0], dtype=torch.float64, requires_grad=True)
    zt = 2 * xt + 2 + xt
    qt = zt.relu() + zt * xt
    ht = (zt * zt).relu()
    yt = ht + qt + qt * xt
    yt.backward()

    assert y.data == yt.data.item()
    assert x.grad == xt.grad.item()


def test_more_ops_match_torch():
    a = Value(-4.0)
    b = Value(2.0)
    c = a + b
    d = a * b + b ** 3
    c = c + c + 1
    c = c + 1 + c + (-a)
    d = d + d * 2 + (b + a).relu()
    d = d + 3 * d + (b - a).relu()
    e = c - d
    f = e ** 2
    g = f / 2.0
    g = g + 10.0 / f
    g.backward()

    at = torch.tensor([-4.0], dtype=torch.float64, requires_grad=True)
    bt = torch.tensor([2.0], dtype=torch.float64, requires_grad=True)
    ct = at + bt
    dt = at * bt + bt ** 3
    ct = ct + ct + 1
    ct = ct + 1 + ct + (-at)
    dt = dt + dt * 2 + (bt + at).relu()
    dt = dt + 3 * dt + (bt - at).relu()
    et = ct - dt
    ft = et ** 2
    gt = ft / 2.0
    gt = gt + 10.0 / ft
    gt.backward()

    assert abs(g.data - gt.data.item()) < 1e-10
    assert abs(a.grad - at.grad.item()) < 1e-10
    assert abs(b.grad - bt.grad.item()) < 1e-10


@pytest.mark.parametrize("make", [
    lambda: Value(1.0) / 0,
    lambda: Value(1.0) / Value(0.0),
    lambda: 1.0 / Value(0.0),
    lambda: Value(0.0).log(),
    lambda: Value(-1.0).log(),
    lambda: Value(-2.0) ** 0.5,
    lambda: Value(0.0) ** -1,
    lambda: Value(1000.0).exp(),
    lambda: Value(1e200) ** 2,
])
def test_domain_errors(make):
    with pytest.raises(DomainError):
        make()


def test_domain_error_is_a_value_error():
    with pytest.raises(ValueError):
        Value(0.0).log()


def test_negative_base_with_integer_exponent_is_allowed():
    a = Value(-2.0)
    y = a ** 3
    y.backward()
    assert y.data == -8.0
    assert a.grad == 12.0


def test_power_rejects_value_exponent():
    with pytest.raises(TypeError):
        Value(2.0) ** Value(3.0)


def test_operands_are_not_mutated():
    a = Value(1.5)
    b = Value(-0.5)
    _ = (a * b + a).tanh()
    assert (a.data, a.grad, a.op, a.parents) == (1.5, 0.0, Op.LEAF, ())
    assert (b.data, b.grad, b.op, b.parents) == (-0.5, 0.0, Op.LEAF, ())


def test_exp_log_roundtrip():
    a = Value(0.7)
    y = a.exp().log()
    y.backward()
    assert y.data == pytest.approx(0.7)
    assert a.grad == pytest.approx(1.0)
    assert math.isclose(float(y), 0.7)
