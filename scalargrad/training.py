import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from scalargrad.lr_scheduler import ReduceLROnPlateau
from scalargrad.value import no_grad

logger = logging.getLogger(__name__)

Sample = Tuple[Any, Any]


def train_step(model: Any, loss_fn: Any, optimizer: Any, x: Any, y: Any) -> float:
    """
    Run one optimization step on a single ``(x, y)`` sample or batch.

    The phases run strictly in order: zero gradients, forward, backward,
    parameter update. Each phase completes before the next one starts.

    Returns
    -------
    float
        Loss value before the update.
    """
    optimizer.zero_grad()
    loss = loss_fn(model(x), y)
    loss.backward()
    optimizer.step()
    return loss.data


def train_one_epoch(model: Any, samples: Iterable[Sample], loss_fn: Any, optimizer: Any) -> float:
    """
    Train a model for one pass over ``samples``.

    Parameters
    ----------
    model : Module
        Model to train.
    samples : Iterable[tuple]
        Yields ``(x, y)`` pairs; ``x`` may be a single input or a batch.
    loss_fn : Module or callable
        Maps ``(prediction, target)`` to a scalar ``Value``.
    optimizer : Optimizer
        Optimizer over ``model.parameters()``.

    Returns
    -------
    float
        Mean loss over the yielded pairs.
    """
    model.train()
    total_loss = 0.
    count = 0
    for x, y in samples:
        total_loss += train_step(model, loss_fn, optimizer, x, y)
        count += 1
    return total_loss / max(1, count)


def evaluate(model: Any, samples: Iterable[Sample], loss_fn: Any) -> float:
    """Mean loss over ``samples`` without recording a graph."""
    model.eval()
    total_loss = 0.
    count = 0
    with no_grad():
        for x, y in samples:
            total_loss += loss_fn(model(x), y).data
            count += 1
    return total_loss / max(1, count)


def fit(
    model: Any,
    samples: Iterable[Sample],
    loss_fn: Any,
    optimizer: Any,
    num_epochs: int = 10,
    val_samples: Optional[Iterable[Sample]] = None,
    scheduler: Optional[Any] = None,
) -> Dict[str, List[Optional[float]]]:
    """
    Train a model for several epochs with optional validation and
    learning-rate scheduling.

    Parameters
    ----------
    model : Module
        Model to train.
    samples : Iterable[tuple]
        Training ``(x, y)`` pairs. Must be re-iterable (e.g. a list).
    loss_fn : Module or callable
        Maps ``(prediction, target)`` to a scalar ``Value``.
    optimizer : Optimizer
        Optimizer used for parameter updates.
    num_epochs : int, default=10
        Number of passes over ``samples``.
    val_samples : Iterable[tuple], optional
        Validation pairs evaluated after each epoch.
    scheduler : LRScheduler, optional
        Stepped once per epoch. :class:`ReduceLROnPlateau` receives the
        validation loss if available, else the training loss.

    Returns
    -------
    dict
        ``{"train_loss": [...], "val_loss": [...]}`` with one entry per epoch
        (``None`` for validation when ``val_samples`` is not given).
    """
    history = {"train_loss": [], "val_loss": []}

    for epoch in range(num_epochs):
        train_loss = train_one_epoch(model, samples, loss_fn, optimizer)
        val_loss = evaluate(model, val_samples, loss_fn) if val_samples is not None else None

        if scheduler is not None:
            if isinstance(scheduler, ReduceLROnPlateau):
                scheduler.step(val_loss if val_loss is not None else train_loss)
            else:
                scheduler.step()

        history["train_loss"].append(train_loss)
        history["val_loss"].append(val_loss)

        msg = f"Epoch {epoch + 1}/{num_epochs}, lr={optimizer.lr:.6g} Train: {train_loss:.4f}"
        if val_loss is not None:
            msg += f"  Val: {val_loss:.4f}"
        logger.info(msg)

    return history
