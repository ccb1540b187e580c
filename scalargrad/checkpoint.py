import logging
import pickle
from typing import Any, Dict, Optional

import numpy as np

from scalargrad.errors import ShapeMismatch

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
"""int: Layout version written into every checkpoint."""


def _param_shapes(state: Dict[str, Any]) -> Dict[str, tuple]:
    return {name: np.shape(value) for name, value in state.items()}


def save_checkpoint(
    path: str,
    model: Any,
    optimizer: Optional[Any] = None,
    epoch: Optional[int] = None,
    scheduler: Optional[Any] = None,
) -> None:
    """
    Write model parameter values (and optionally optimizer and scheduler
    state) to ``path``.

    Besides the ``state_dict`` payloads, the file records the shape of every
    named parameter and the number of trainable scalar leaves, so
    :func:`load_checkpoint` can reject a mismatched architecture before any
    value is overwritten. Graph nodes themselves are never pickled.
    """
    model_state = model.state_dict()
    payload = {
        "format_version": FORMAT_VERSION,
        "model": model_state,
        "shapes": _param_shapes(model_state),
        "num_scalars": len(model.parameters()),
        "epoch": epoch,
        "optimizer": optimizer.state_dict() if optimizer is not None else None,
        "scheduler": scheduler.state_dict() if scheduler is not None else None,
    }

    with open(path, "wb") as f:
        pickle.dump(payload, f)
    logger.debug(
        "saved checkpoint to %s: %d tensors, %d scalar parameters",
        path, len(model_state), payload["num_scalars"],
    )


def _check_model(payload: Dict[str, Any], model: Any) -> None:
    expected = _param_shapes(model.state_dict())
    stored = payload["shapes"]

    missing = sorted(set(expected) - set(stored))
    unexpected = sorted(set(stored) - set(expected))
    if missing or unexpected:
        raise KeyError(
            f"checkpoint parameters do not match model: missing {missing}, unexpected {unexpected}"
        )

    for name, shape in expected.items():
        if tuple(stored[name]) != tuple(shape):
            raise ShapeMismatch(f"parameter {name!r} has shape {stored[name]} in checkpoint, model expects {shape}")

    n_scalars = len(model.parameters())
    if payload["num_scalars"] != n_scalars:
        raise ShapeMismatch(
            f"checkpoint holds {payload['num_scalars']} scalar parameters, model has {n_scalars}"
        )


def _check_optimizer(state: Dict[str, Any], optimizer: Any) -> None:
    n_params = len(optimizer.params)
    for key, buf in state["state"].items():
        if isinstance(buf, np.ndarray) and buf.shape != (n_params,):
            raise ShapeMismatch(
                f"optimizer buffer {key!r} holds {buf.shape[0]} entries, optimizer has {n_params} parameters"
            )


def load_checkpoint(
    path: str,
    model: Any,
    optimizer: Optional[Any] = None,
    scheduler: Optional[Any] = None,
) -> Optional[int]:
    """
    Restore a checkpoint written by :func:`save_checkpoint`.

    All checks run before anything is loaded, so on error the model,
    optimizer and scheduler are left as they were. Parameters are then
    overwritten in place, keeping node identity, so an optimizer built over
    ``model.parameters()`` keeps working.

    Returns
    -------
    int or None
        The stored epoch, or ``None`` if none was saved.

    Raises
    ------
    ValueError
        If the file was written with an unknown format version.
    KeyError
        If the stored parameter names differ from the model's.
    ShapeMismatch
        If a parameter shape, the scalar parameter count or an optimizer
        buffer length differs from the target objects.
    """
    with open(path, "rb") as f:
        payload = pickle.load(f)

    version = payload.get("format_version")
    if version != FORMAT_VERSION:
        raise ValueError(f"unsupported checkpoint format version {version!r} (expected {FORMAT_VERSION})")

    _check_model(payload, model)
    if optimizer is not None and payload["optimizer"] is not None:
        _check_optimizer(payload["optimizer"], optimizer)

    model.load_state_dict(payload["model"])
    if optimizer is not None and payload["optimizer"] is not None:
        optimizer.load_state_dict(payload["optimizer"])
    if scheduler is not None and payload["scheduler"] is not None:
        scheduler.load_state_dict(payload["scheduler"])

    logger.debug("loaded checkpoint from %s (epoch %s)", path, payload["epoch"])
    return payload["epoch"]
