from __future__ import annotations

from dataclasses import dataclass
import math


_METHODS = ("linear", "log")


def interpolate(x1: float, x2: float, t: float, *, method: str = "linear") -> float:
    """
    Interpolate between two values.

    Parameters
    ----------
    x1 : float
        Value at ``t = 0``.
    x2 : float
        Value at ``t = 1``.
    t : float
        Progress; clamped to [0, 1].
    method : {"linear", "log"}, default="linear"
        - "linear": ``x1 + (x2 - x1) * t``
        - "log":    ``x1^(1-t) * x2^t`` (geometric; both ends must be > 0)

    Returns
    -------
    x : float

    Raises
    ------
    ValueError
        On an unknown method, or non-positive endpoints for "log".
    """
    m = str(method).lower().strip()
    t = min(max(float(t), 0.0), 1.0)
    x1 = float(x1)
    x2 = float(x2)

    if m == "linear":
        return x1 + (x2 - x1) * t
    if m == "log":
        if x1 <= 0.0 or x2 <= 0.0:
            raise ValueError(f"log interpolation requires positive endpoints, got x1={x1}, x2={x2}")
        return math.exp((1.0 - t) * math.log(x1) + t * math.log(x2))
    raise ValueError(f"Unknown interpolation method: {method!r} (expected one of {_METHODS})")


@dataclass
class AnnealingSchedule:
    """
    Step-indexed annealing between ``start`` and ``end``.

    Typical use is annealing PPO coefficients between training iterations::

        sched = AnnealingSchedule(start=0.2, end=0.05, total_steps=100)
        model.hyperparams.clip_epsilon = sched(iteration)
    """

    start: float
    end: float
    total_steps: int
    method: str = "linear"

    def __post_init__(self) -> None:
        self.total_steps = int(self.total_steps)
        if self.total_steps <= 0:
            raise ValueError(f"total_steps must be > 0, got {self.total_steps}")
        if str(self.method).lower().strip() not in _METHODS:
            raise ValueError(f"Unknown interpolation method: {self.method!r}")

    def value(self, step: int) -> float:
        return interpolate(self.start, self.end, float(step) / float(self.total_steps), method=self.method)

    def __call__(self, step: int) -> float:
        return self.value(step)
