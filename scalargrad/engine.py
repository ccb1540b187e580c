import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from scalargrad.errors import DomainError, InvariantViolation
from scalargrad.value import Op, Value

logger = logging.getLogger(__name__)


def _pow_rule(node: Value) -> Tuple[float, ...]:
    (base,) = node.parents
    k = node.exponent
    if k == 0:
        return (0.0,)
    if base.data == 0.0 and k < 1:
        raise DomainError(f"derivative of x ** {k} is undefined at x = 0")
    return (k * base.data ** (k - 1),)


LOCAL_GRADIENTS: Dict[Op, Callable[[Value], Tuple[float, ...]]] = {
    Op.ADD: lambda n: (1.0, 1.0),
    Op.MUL: lambda n: (n.parents[1].data, n.parents[0].data),
    Op.POW: _pow_rule,
    Op.NEG: lambda n: (-1.0,),
    Op.RELU: lambda n: (1.0 if n.parents[0].data > 0.0 else 0.0,),
    Op.TANH: lambda n: (1.0 - n.data ** 2,),
    Op.SIGMOID: lambda n: (n.data * (1.0 - n.data),),
    Op.EXP: lambda n: (n.data,),
    Op.LOG: lambda n: (1.0 / n.parents[0].data,),
}
"""Local derivative rule per operation tag.

Each rule maps a node to ``d(node)/d(parent)`` for every entry of
``node.parents``, in the same order.
"""


def topological_order(roots: Iterable[Value]) -> List[Value]:
    """
    Order every node reachable from ``roots`` so parents precede children.

    Only nodes with ``requires_grad`` are visited. Each node appears exactly
    once, no matter how many paths lead to it. The traversal is an explicit
    stack DFS, so arbitrarily deep graphs (long sum chains) are fine.

    Parameters
    ----------
    roots : Iterable[Value]
        Output nodes to start from.

    Returns
    -------
    list[Value]
        Nodes in topological order (leaves first, roots last).

    Raises
    ------
    InvariantViolation
        If a node is reached again while still on the current DFS path.
    """
    order = []
    done = set()
    on_path = set()

    for root in roots:
        if root in done or not root.requires_grad:
            continue
        on_path.add(root)
        stack = [(root, iter(root.parents))]
        while stack:
            node, parents = stack[-1]
            for parent in parents:
                if not parent.requires_grad or parent in done:
                    continue
                if parent in on_path:
                    raise InvariantViolation(f"cycle detected in computation graph at {parent!r}")
                on_path.add(parent)
                stack.append((parent, iter(parent.parents)))
                break
            else:
                stack.pop()
                on_path.discard(node)
                done.add(node)
                order.append(node)

    return order


def backward(
    roots: Sequence[Value],
    gradients: Optional[Sequence[float]] = None,
) -> None:
    """
    Run reverse-mode differentiation from one or more root nodes.

    Parameters
    ----------
    roots : Sequence[Value]
        Nodes to differentiate. Typically a single loss.
    gradients : Sequence[float], optional
        Seed gradient per root. Defaults to 1.0 for each root.

    Raises
    ------
    InvariantViolation
        If a root does not require grad (no recorded history), or the graph
        contains a cycle.
    ValueError
        If ``gradients`` and ``roots`` differ in length.
    DomainError
        If a local derivative is undefined, e.g. ``x ** 0.5`` at ``x = 0``.

    Notes
    -----
    - Interior (non-leaf) nodes are reset to zero before seeding. Leaf
      gradients, including those of a leaf passed as a root, are only ever
      added to, so they accumulate across successive calls until the caller
      zeroes them.
    - Every local derivative is evaluated before any gradient is touched.
      If one of them raises (``DomainError``), no ``grad`` has changed.
    - Each node propagates once, after all of its dependents have
      contributed to its gradient.
    """
    roots = list(roots)
    if gradients is None:
        gradients = [1.0] * len(roots)
    else:
        gradients = [float(g) for g in gradients]
        if len(gradients) != len(roots):
            raise ValueError(f"got {len(gradients)} seed gradients for {len(roots)} roots")

    for root in roots:
        if not root.requires_grad:
            raise InvariantViolation(f"{root!r} has no recorded operation history (requires_grad=False)")

    order = topological_order(roots)
    partials = {node: LOCAL_GRADIENTS[node.op](node) for node in order if not node.is_leaf}

    for node in partials:
        node.grad = 0.0
    for root, g in zip(roots, gradients):
        root.grad += g

    for node in reversed(order):
        if node.is_leaf:
            continue
        for parent, local in zip(node.parents, partials[node]):
            if parent.requires_grad:
                parent.grad += local * node.grad

    logger.debug("backward visited %d nodes from %d root(s)", len(order), len(roots))
