import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LRScheduler:
    """
    Base class for learning rate schedulers.

    A scheduler changes ``optimizer.lr`` between optimization steps (or
    epochs). Subclasses implement :meth:`step`.

    Parameters
    ----------
    optimizer : Optimizer
        Optimizer exposing a mutable float attribute ``lr``.

    Notes
    -----
    :meth:`state_dict` returns every attribute except the optimizer
    reference, so a scheduler can be checkpointed alongside its optimizer.
    """
    def __init__(self, optimizer: Any) -> None:
        self.optimizer = optimizer
        self.base_lr = optimizer.lr

    def step(self, *args: Any, **kwargs: Any) -> None:
        raise NotImplementedError

    def _set_lr(self, lr: float) -> None:
        if lr != self.optimizer.lr:
            logger.debug("%s: lr %g -> %g", self.__class__.__name__, self.optimizer.lr, lr)
        self.optimizer.lr = lr

    def state_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if k != "optimizer"}

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)


class StepLR(LRScheduler):
    """
    Multiply the learning rate by ``gamma`` every ``step_size`` steps.

    Parameters
    ----------
    optimizer : Optimizer
        Optimizer to schedule.
    step_size : int
        Period of learning rate decay.
    gamma : float, default=0.1
        Multiplicative decay factor.
    last_epoch : int, default=0
        Initial step counter (useful when resuming).
    """
    def __init__(self, optimizer: Any, step_size: int, gamma: float = 0.1, last_epoch: int = 0) -> None:
        super().__init__(optimizer)
        if step_size <= 0:
            raise ValueError(f"step_size must be positive, got {step_size}")
        self.step_size = step_size
        self.gamma = gamma
        self.last_epoch = last_epoch

    def step(self) -> None:
        self.last_epoch += 1
        if self.last_epoch % self.step_size == 0:
            self._set_lr(self.optimizer.lr * self.gamma)


class ExponentialLR(LRScheduler):
    """
    Exponential decay ``lr = base_lr * gamma ** t``, recomputed from
    ``base_lr`` at every step.
    """
    def __init__(self, optimizer: Any, gamma: float, last_epoch: int = 0) -> None:
        super().__init__(optimizer)
        self.gamma = gamma
        self.last_epoch = last_epoch

    def step(self) -> None:
        self.last_epoch += 1
        self._set_lr(self.base_lr * self.gamma ** self.last_epoch)


class ReduceLROnPlateau(LRScheduler):
    """
    Reduce the learning rate when a monitored loss stops improving.

    Parameters
    ----------
    optimizer : Optimizer
        Optimizer to schedule.
    factor : float, default=0.1
        ``lr *= factor`` on each reduction.
    patience : int, default=5
        Number of non-improving steps tolerated before reducing.
    threshold : float, default=1e-4
        Minimum absolute decrease that counts as an improvement.
    min_lr : float, default=0.0
        Lower bound on the learning rate.

    Notes
    -----
    Lower metric values are better: improvement means
    ``metric < best - threshold``.
    """
    def __init__(
        self,
        optimizer: Any,
        factor: float = 0.1,
        patience: int = 5,
        threshold: float = 1e-4,
        min_lr: float = 0.0,
    ) -> None:
        super().__init__(optimizer)
        if not 0.0 < factor < 1.0:
            raise ValueError(f"factor must be in (0, 1), got {factor}")
        self.factor = factor
        self.patience = patience
        self.threshold = threshold
        self.min_lr = min_lr
        self.best: Optional[float] = None
        self.bad = 0

    def step(self, metric: float) -> None:
        if self.best is None or metric < self.best - self.threshold:
            self.best = metric
            self.bad = 0
            return
        self.bad += 1
        if self.bad > self.patience:
            new_lr = max(self.optimizer.lr * self.factor, self.min_lr)
            if new_lr < self.optimizer.lr:
                logger.info("loss plateaued at %.6g, reducing lr to %g", self.best, new_lr)
                self._set_lr(new_lr)
            self.bad = 0
