"""
Optimizers
====================

Factories for torch optimizers and LR schedulers, plus gradient clipping and
checkpoint helpers used by the update cores.
"""

from __future__ import annotations

from .optimizer_builder import (
    OPTIMIZER_NAMES,
    build_optimizer,
    clip_grad_norm,
    load_optimizer_state_dict,
    optimizer_state_dict,
)
from .scheduler_builder import (
    SCHEDULER_NAMES,
    build_scheduler,
    load_scheduler_state_dict,
    scheduler_state_dict,
)

__all__ = [
    "OPTIMIZER_NAMES",
    "SCHEDULER_NAMES",
    "build_optimizer",
    "build_scheduler",
    "clip_grad_norm",
    "load_optimizer_state_dict",
    "load_scheduler_state_dict",
    "optimizer_state_dict",
    "scheduler_state_dict",
]
