"""
Buffers
====================

On-policy trajectory storage and minibatch iteration.
"""

from __future__ import annotations

from .trajectory_buffer import (
    TrajectoryBatch,
    TrajectoryBuffer,
    iterate_minibatches,
    make_trajectory_batch,
)

__all__ = [
    "TrajectoryBatch",
    "TrajectoryBuffer",
    "iterate_minibatches",
    "make_trajectory_batch",
]
