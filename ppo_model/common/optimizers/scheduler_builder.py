from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

import math

from torch.optim import Optimizer
from torch.optim.lr_scheduler import ExponentialLR, LambdaLR, LRScheduler, StepLR

from ..utils.schedule_utils import interpolate


SCHEDULER_NAMES = ("none", "constant", "linear", "log", "cosine", "step", "exponential")


# =============================================================================
# Public API
# =============================================================================
def build_scheduler(
    optimizer: Optimizer,
    *,
    name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    step_size: int = 1000,
    gamma: float = 0.99,
) -> Optional[LRScheduler]:
    """
    Construct a learning-rate scheduler from a string identifier.

    The scheduler is stepped once per ``optimizer.step()`` by the core, so
    ``total_steps`` counts gradient updates.

    Parameters
    ----------
    optimizer : torch.optim.Optimizer
        Optimizer whose param-group learning rates are scheduled.
    name : str, default="none"
        - "none" / "constant": no scheduler (returns None)
        - "linear": linear decay from 1 to ``min_lr_ratio`` (optional warmup)
        - "log": geometric decay from 1 to ``min_lr_ratio`` (requires ratio > 0)
        - "cosine": cosine decay from 1 to ``min_lr_ratio`` (optional warmup)
        - "step": StepLR(step_size, gamma)
        - "exponential": ExponentialLR(gamma)
    total_steps : int, default=0
        Horizon for linear/log/cosine. Must be > 0 for those schedules.
    warmup_steps : int, default=0
        Linear warmup length for linear/log/cosine.
    min_lr_ratio : float, default=0.0
        Final LR multiplier in [0, 1].
    step_size : int, default=1000
        StepLR period.
    gamma : float, default=0.99
        StepLR / ExponentialLR decay factor.

    Returns
    -------
    scheduler : Optional[LRScheduler]

    Raises
    ------
    ValueError
        On an unknown name or invalid hyperparameters.
    """
    sched = str(name).lower().strip().replace("-", "_")
    if sched in ("none", "constant"):
        return None

    min_lr_ratio = float(min_lr_ratio)
    if not (0.0 <= min_lr_ratio <= 1.0):
        raise ValueError(f"min_lr_ratio must be in [0, 1], got: {min_lr_ratio}")
    warmup_steps = int(warmup_steps)
    if warmup_steps < 0:
        raise ValueError(f"warmup_steps must be >= 0, got: {warmup_steps}")

    if sched in ("linear", "log", "cosine"):
        total_steps = int(total_steps)
        if total_steps <= 0:
            raise ValueError(f"{sched} scheduler requires total_steps > 0, got: {total_steps}")
        if sched == "log" and min_lr_ratio <= 0.0:
            raise ValueError("log scheduler requires min_lr_ratio > 0")
        fn = _lr_lambda(
            method=sched,
            total_steps=total_steps,
            warmup_steps=warmup_steps,
            min_lr_ratio=min_lr_ratio,
        )
        return LambdaLR(optimizer, lr_lambda=fn)

    gamma = float(gamma)
    if gamma <= 0:
        raise ValueError(f"gamma must be > 0, got: {gamma}")

    if sched == "step":
        step_size = int(step_size)
        if step_size <= 0:
            raise ValueError(f"step_size must be > 0, got: {step_size}")
        return StepLR(optimizer, step_size=step_size, gamma=gamma)

    if sched == "exponential":
        return ExponentialLR(optimizer, gamma=gamma)

    raise ValueError(f"Unknown scheduler name: {name!r} (expected one of {SCHEDULER_NAMES})")


def scheduler_state_dict(scheduler: Optional[LRScheduler]) -> Dict[str, Any]:
    return {} if scheduler is None else scheduler.state_dict()


def load_scheduler_state_dict(scheduler: Optional[LRScheduler], state: Mapping[str, Any]) -> None:
    """No-op when either side is empty (e.g., scheduler disabled at save time)."""
    if scheduler is None or not state:
        return
    scheduler.load_state_dict(dict(state))


# =============================================================================
# LambdaLR multipliers
# =============================================================================
def _lr_lambda(
    *,
    method: str,
    total_steps: int,
    warmup_steps: int,
    min_lr_ratio: float,
) -> Callable[[int], float]:
    """
    Multiplier ``f(step)``: linear warmup to 1, then decay toward ``min_lr_ratio``.
    """

    def f(step: int) -> float:
        s = max(0, int(step))

        if warmup_steps > 0 and s < warmup_steps:
            return (s + 1) / float(warmup_steps)

        denom = max(1, total_steps - warmup_steps)
        t = min(1.0, (s - warmup_steps) / float(denom))

        if method == "cosine":
            cosine = 0.5 * (1.0 + math.cos(math.pi * t))
            return min_lr_ratio + (1.0 - min_lr_ratio) * cosine
        return interpolate(1.0, min_lr_ratio, t, method=method)

    return f
